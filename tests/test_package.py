from __future__ import annotations

import json

import pytest

from orgdelta.config import EngineConfig
from orgdelta.errors import EmissionError
from orgdelta.manifest import parse_manifest
from orgdelta.package import build_delta_package, package_relpath
from orgdelta.pipeline import compare_trees

from conftest import apex_class, write_tree


@pytest.fixture
def comparison(tmp_path):
    source = write_tree(
        tmp_path / "source",
        {
            **apex_class("Foo", " v2 "),
            **apex_class("Same"),
            "force-app/main/default/lwc/card/card.js": "export default class Card {}",
            "force-app/main/default/lwc/card/card.js-meta.xml": "<LightningComponentBundle/>",
        },
    )
    dest = write_tree(
        tmp_path / "dest",
        {
            **apex_class("Foo", " v1 "),
            **apex_class("Same"),
            "objects/Old__c.object": "<CustomObject/>",
        },
    )
    return compare_trees(source, dest, EngineConfig())


def test_package_relpath() -> None:
    config = EngineConfig()
    assert package_relpath("classes/Foo.cls", config).as_posix() == (
        "force-app/main/default/classes/Foo.cls"
    )
    assert package_relpath("force-app/main/default/lwc/card/card.js", config).as_posix() == (
        "force-app/main/default/lwc/card/card.js"
    )
    assert package_relpath("loose/file.txt", config).as_posix() == (
        "force-app/main/default/loose/file.txt"
    )


def test_package_holds_changed_files_and_manifests(tmp_path, comparison) -> None:
    out = tmp_path / "pkg"

    result = build_delta_package(comparison, out, EngineConfig(), include_destructive=True)

    default = out / "force-app" / "main" / "default"
    assert (default / "classes" / "Foo.cls").read_text(encoding="utf-8") == (
        "public class Foo { v2 }\n"
    )
    assert (default / "classes" / "Foo.cls-meta.xml").exists()
    assert (default / "lwc" / "card" / "card.js").exists()
    assert not (default / "classes" / "Same.cls").exists()
    assert result.copied_files == 4
    assert parse_manifest(result.manifest_path).types == {
        "ApexClass": ["Foo"],
        "LightningComponentBundle": ["card"],
    }
    assert result.destructive is not None
    assert parse_manifest(result.destructive.path).types == {"CustomObject": ["Old__c"]}
    project = json.loads((out / "sfdx-project.json").read_text(encoding="utf-8"))
    assert project["sourceApiVersion"] == "60.0"
    assert project["packageDirectories"] == [{"default": True, "path": "force-app"}]


def test_package_refuses_non_empty_directory(tmp_path, comparison) -> None:
    out = tmp_path / "pkg"
    out.mkdir()
    (out / "keep.txt").write_text("x", encoding="utf-8")

    with pytest.raises(FileExistsError):
        build_delta_package(comparison, out, EngineConfig())

    assert (out / "keep.txt").exists()

    build_delta_package(comparison, out, EngineConfig(), overwrite=True)
    assert not (out / "keep.txt").exists()
    assert (out / "package.xml").exists()


def test_strict_package_with_nothing_to_deploy(tmp_path) -> None:
    same = apex_class("Foo")
    comparison = compare_trees(
        write_tree(tmp_path / "a", same), write_tree(tmp_path / "b", same), EngineConfig()
    )

    with pytest.raises(EmissionError):
        build_delta_package(comparison, tmp_path / "pkg", EngineConfig(), strict=True)

    assert not (tmp_path / "pkg").exists()
