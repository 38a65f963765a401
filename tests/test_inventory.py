from __future__ import annotations

import os
import sys
from hashlib import sha256

import pytest

from orgdelta.config import EngineConfig, TypeMapping
from orgdelta.errors import InventoryError, InventoryErrorKind
from orgdelta.inventory import InventoryBuilder, pair_sidecars, strip_extension

from conftest import CLASS_META, apex_class, write_tree


def _build(root, config: EngineConfig | None = None):
    return InventoryBuilder(root, config or EngineConfig()).build()


def test_strip_extension() -> None:
    assert strip_extension("Foo.cls") == "Foo"
    assert strip_extension("Foo.cls-meta.xml") == "Foo"
    assert strip_extension("Account.object-meta.xml") == "Account"
    assert strip_extension("Case-Case Layout.layout-meta.xml") == "Case-Case Layout"
    assert strip_extension("README") == "README"
    assert strip_extension(".hidden") == ".hidden"


def test_primary_and_sidecar_form_one_component(tmp_path) -> None:
    root = write_tree(tmp_path / "src", apex_class("Foo"))

    inventory = _build(root)

    assert list(inventory.records) == [("ApexClass", "Foo")]
    record = inventory.records[("ApexClass", "Foo")]
    assert record.file_path == "classes/Foo.cls"
    assert record.folder_path == ()
    assert record.member_paths == ("classes/Foo.cls", "classes/Foo.cls-meta.xml")
    expected = sha256(("public class Foo {}\n" + CLASS_META).encode("utf-8")).digest()
    assert record.content_hash == expected
    assert inventory.warnings == ()


def test_sidecar_change_changes_hash(tmp_path) -> None:
    left = write_tree(tmp_path / "left", apex_class("Foo"))
    right = write_tree(tmp_path / "right", apex_class("Foo"))
    (right / "classes" / "Foo.cls-meta.xml").write_text(
        CLASS_META.replace("60.0", "59.0"), encoding="utf-8"
    )

    left_record = _build(left).records[("ApexClass", "Foo")]
    right_record = _build(right).records[("ApexClass", "Foo")]

    assert left_record.content_hash != right_record.content_hash


def test_type_folder_below_project_prefix(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "force-app/main/default/triggers/AccountTrigger.trigger": "trigger x on Account (before insert) {}",
            "force-app/main/default/profiles/Admin.profile-meta.xml": "<Profile/>",
        },
    )

    inventory = _build(root)

    assert set(inventory.records) == {
        ("ApexTrigger", "AccountTrigger"),
        ("Profile", "Admin"),
    }
    assert inventory.records[("Profile", "Admin")].member_paths == (
        "force-app/main/default/profiles/Admin.profile-meta.xml",
    )


def test_folder_layout_prefixes_full_name(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "reports/Sales/Pipeline.report-meta.xml": "<Report/>",
            "reports/Sales.reportFolder-meta.xml": "<ReportFolder/>",
        },
    )

    inventory = _build(root)

    assert set(inventory.records) == {("Report", "Sales/Pipeline"), ("Report", "Sales")}
    assert inventory.records[("Report", "Sales/Pipeline")].folder_path == ("Sales",)


def test_bundle_layout_groups_files(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "lwc/myCard/myCard.js": "export default class MyCard {}",
            "lwc/myCard/myCard.html": "<template></template>",
            "lwc/myCard/myCard.js-meta.xml": "<LightningComponentBundle/>",
            "lwc/myCard/__tests__/myCard.test.js": "test()",
        },
    )

    inventory = _build(root)

    assert list(inventory.records) == [("LightningComponentBundle", "myCard")]
    record = inventory.records[("LightningComponentBundle", "myCard")]
    assert record.file_path == "lwc/myCard"
    assert len(record.member_paths) == 4


def test_bundle_hash_covers_member_names(tmp_path) -> None:
    left = write_tree(tmp_path / "left", {"aura/cmp/a.js": "x", "aura/cmp/b.js": ""})
    right = write_tree(tmp_path / "right", {"aura/cmp/a.js": "", "aura/cmp/b.js": "x"})

    left_hash = _build(left).records[("AuraDefinitionBundle", "cmp")].content_hash
    right_hash = _build(right).records[("AuraDefinitionBundle", "cmp")].content_hash

    assert left_hash != right_hash


def test_pair_sidecars_exact_then_by_stem() -> None:
    pairs = pair_sidecars(
        [
            "classes/Foo.cls",
            "classes/Foo.cls-meta.xml",
            "documents/Shared/logo.document-meta.xml",
            "documents/Shared/logo.png",
            "documents/Shared/orphan.document-meta.xml",
        ]
    )

    assert pairs == {
        "classes/Foo.cls": "classes/Foo.cls-meta.xml",
        "documents/Shared/logo.png": "documents/Shared/logo.document-meta.xml",
    }


def test_document_content_pairs_with_its_sidecar(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "documents/Shared/logo.png": "PNG",
            "documents/Shared/logo.document-meta.xml": "<Document/>",
            "documents/Shared.documentFolder-meta.xml": "<DocumentFolder/>",
        },
    )

    inventory = _build(root)

    assert set(inventory.records) == {
        ("Document", "Shared/logo.png"),
        ("Document", "Shared"),
    }
    record = inventory.records[("Document", "Shared/logo.png")]
    assert record.file_path == "documents/Shared/logo.png"
    assert record.folder_path == ("Shared",)
    assert record.member_paths == (
        "documents/Shared/logo.png",
        "documents/Shared/logo.document-meta.xml",
    )
    assert record.content_hash == sha256(b"PNG<Document/>").digest()
    assert inventory.warnings == ()


def test_stem_paired_file_in_unmapped_folder_keeps_extension(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "assets/banner.jpg": "JPG",
            "assets/banner.document-meta.xml": "<Document/>",
        },
    )

    inventory = _build(root)

    assert list(inventory.records) == [("Document", "banner.jpg")]
    record = inventory.records[("Document", "banner.jpg")]
    assert record.member_paths == ("assets/banner.jpg", "assets/banner.document-meta.xml")
    assert inventory.warnings == ()


@pytest.mark.skipif(
    sys.platform in ("darwin", "win32"), reason="needs byte-oriented file names"
)
def test_bundle_with_undecodable_file_name(tmp_path) -> None:
    root = write_tree(tmp_path / "src", {"lwc/widget/widget.js": "x"})
    (root / "lwc" / "widget" / os.fsdecode(b"caf\xe9.css")).write_text("y", encoding="utf-8")

    inventory = _build(root)

    record = inventory.records[("LightningComponentBundle", "widget")]
    assert len(record.member_paths) == 2
    assert record.file_path == "lwc/widget"


def test_decomposed_object_is_one_bundle(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "objects/Account/Account.object-meta.xml": "<CustomObject/>",
            "objects/Account/fields/Rating__c.field-meta.xml": "<CustomField/>",
            "objects/Contact/fields/Rating__c.field-meta.xml": "<CustomField/>",
            "objects/Invoice__c.object": "<CustomObject/>",
        },
    )

    inventory = _build(root)

    assert set(inventory.records) == {
        ("CustomObject", "Account"),
        ("CustomObject", "Contact"),
        ("CustomObject", "Invoice__c"),
    }
    assert inventory.records[("CustomObject", "Invoice__c")].file_path == "objects/Invoice__c.object"


def test_unmapped_folder_falls_back_to_sidecar_root_element(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "custom/Helper.cls": "public class Helper {}",
            "custom/Helper.cls-meta.xml": CLASS_META,
        },
    )

    inventory = _build(root)

    assert list(inventory.records) == [("ApexClass", "Helper")]
    assert inventory.warnings == ()


def test_unmapped_folder_without_sidecar_is_skipped_with_warning(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            **apex_class("Foo"),
            "mystery/thing.bin": "???",
        },
    )

    inventory = _build(root)

    assert list(inventory.records) == [("ApexClass", "Foo")]
    assert len(inventory.warnings) == 1
    warning = inventory.warnings[0]
    assert warning.kind == InventoryErrorKind.UNMAPPED_TYPE
    assert warning.path == "mystery/thing.bin"
    assert "mystery/thing.bin" in warning.describe()


def test_custom_type_map_entry(tmp_path) -> None:
    root = write_tree(tmp_path / "src", {"widgets/Clock.widget": "tick"})
    config = EngineConfig(type_map={"widgets": TypeMapping("widgets", "Widget")})

    inventory = _build(root, config)

    assert list(inventory.records) == [("Widget", "Clock")]


def test_identical_duplicates_collapse(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "a/classes/Foo.cls": "same",
            "b/classes/Foo.cls": "same",
        },
    )

    inventory = _build(root)

    assert inventory.records[("ApexClass", "Foo")].file_path == "a/classes/Foo.cls"
    assert inventory.warnings == ()


def test_top_level_copy_is_authoritative_over_nested_copy(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "classes/Foo.cls": "top",
            "classes/legacy/Foo.cls": "nested",
        },
    )

    inventory = _build(root)

    assert inventory.records[("ApexClass", "Foo")].file_path == "classes/Foo.cls"
    assert [w.kind for w in inventory.warnings] == [InventoryErrorKind.DUPLICATE_COMPONENT]
    assert inventory.warnings[0].path == "classes/legacy/Foo.cls"


def test_conflicting_duplicates_fail(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            "a/classes/Foo.cls": "one",
            "b/classes/Foo.cls": "two",
        },
    )

    with pytest.raises(InventoryError) as excinfo:
        _build(root)

    assert excinfo.value.kind == InventoryErrorKind.DUPLICATE_COMPONENT
    assert excinfo.value.key == ("ApexClass", "Foo")
    assert "a/classes/Foo.cls" in str(excinfo.value)
    assert "b/classes/Foo.cls" in str(excinfo.value)


def test_forceignore_and_excluded_names(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {
            ".forceignore": "**/jsconfig.json\nclasses/Scratch*\n",
            **apex_class("Foo"),
            **apex_class("ScratchPad"),
            ".sfdx/cache/classes/Bar.cls": "cached",
            "package.xml": "<Package/>",
            "classes/.DS_Store": "",
        },
    )

    inventory = _build(root)

    assert list(inventory.records) == [("ApexClass", "Foo")]
    assert inventory.warnings == ()


def test_forceignore_can_be_disabled(tmp_path) -> None:
    root = write_tree(
        tmp_path / "src",
        {".forceignore": "classes/\n", **apex_class("Foo")},
    )

    assert _build(root).records == {}
    config = EngineConfig(use_forceignore=False)
    assert list(_build(root, config).records) == [("ApexClass", "Foo")]


def test_missing_root_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        _build(tmp_path / "missing")


def test_progress_callback_reports_final_totals(tmp_path) -> None:
    root = write_tree(tmp_path / "src", apex_class("Foo"))
    calls = []

    InventoryBuilder(root, EngineConfig()).build(
        progress_cb=lambda rel, dirs, files: calls.append((str(rel), dirs, files))
    )

    assert calls[-1] == (".", 2, 2)
