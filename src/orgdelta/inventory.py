from __future__ import annotations

import logging
import os
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TypeAlias

from .config import LAYOUT_BUNDLE, LAYOUT_FOLDER, SIDECAR_SUFFIX, EngineConfig, TypeMapping
from .errors import InventoryError, InventoryErrorKind
from .excludes import is_excluded_file_name, is_excluded_folder_name
from .hashing import bundle_digest, component_digest
from .ignore_rules import IgnoreRules
from .models import ComponentKey, ComponentRecord, Inventory, InventoryWarning
from .text_utils import normalize_text

LOGGER = logging.getLogger(__name__)

ProgressCallback: TypeAlias = Callable[[PurePosixPath, int, int], None]


def strip_extension(filename: str) -> str:
    """`Foo.cls` -> `Foo`, `Foo.cls-meta.xml` -> `Foo`, `Foo` -> `Foo`."""
    if filename.endswith(SIDECAR_SUFFIX):
        filename = filename[: -len(SIDECAR_SUFFIX)]
    stem, dot, _ext = filename.rpartition(".")
    return stem if dot and stem else filename


def pair_sidecars(relpaths: list[str]) -> dict[str, str]:
    """Map each primary file to its `-meta.xml` sidecar.

    `Foo.cls` pairs with `Foo.cls-meta.xml`. A sidecar without an exact
    primary pairs by stem with a sibling file, the way documents are stored:
    `logo.png` with `logo.document-meta.xml`.
    """
    present = set(relpaths)
    pairs: dict[str, str] = {}
    by_stem: dict[tuple[str, str], list[str]] = {}
    for relpath in relpaths:
        if relpath.endswith(SIDECAR_SUFFIX):
            continue
        sidecar = f"{relpath}{SIDECAR_SUFFIX}"
        if sidecar in present:
            pairs[relpath] = sidecar
            continue
        parent, _sep, name = relpath.rpartition("/")
        by_stem.setdefault((parent, strip_extension(name)), []).append(relpath)

    for relpath in relpaths:
        if not relpath.endswith(SIDECAR_SUFFIX):
            continue
        if relpath[: -len(SIDECAR_SUFFIX)] in present:
            continue
        parent, _sep, name = relpath.rpartition("/")
        candidates = by_stem.get((parent, strip_extension(name)))
        if candidates:
            pairs[candidates.pop(0)] = relpath
    return pairs


def read_sidecar_type(path: Path) -> str | None:
    """Return the root element name of a `-meta.xml` file, without namespace."""
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError):
        return None
    tag = root.tag.rpartition("}")[2]
    return tag or None


@dataclass
class _Bundle:
    type: str
    name: str
    base: str | None = None
    members: list[tuple[str, str]] = field(default_factory=list)


class InventoryBuilder:
    def __init__(self, root: Path, config: EngineConfig) -> None:
        self.root = root.expanduser().resolve()
        self.config = config

    def build(self, progress_cb: ProgressCallback | None = None) -> Inventory:
        if not self.root.exists() or not self.root.is_dir():
            raise FileNotFoundError(f"Retrieval root not found: {self.root}")

        relpaths = self._walk(progress_cb)
        pairs = pair_sidecars(relpaths)
        claimed = set(pairs.values())
        records: dict[ComponentKey, ComponentRecord] = {}
        warnings: list[InventoryWarning] = []
        bundles: dict[ComponentKey, _Bundle] = {}

        for relpath in relpaths:
            parts = PurePosixPath(relpath).parts
            mapping, index = self._resolve_mapping(parts[:-1])
            filename = parts[-1]

            if mapping is None:
                if relpath in claimed:
                    continue
                record = self._record_from_sidecar(
                    relpath, filename, pairs.get(relpath), warnings
                )
                if record is not None:
                    self._add(records, record, warnings)
                continue

            inner = parts[index + 1 :]
            if mapping.layout == LAYOUT_BUNDLE:
                name = strip_extension(inner[0]) if len(inner) == 1 else inner[0]
                bundle = bundles.setdefault(
                    (mapping.type, name), _Bundle(type=mapping.type, name=name)
                )
                bundle.members.append(("/".join(inner), relpath))
                if len(inner) > 1 and bundle.base is None:
                    bundle.base = "/".join(parts[: index + 2])
                continue

            if relpath in claimed:
                continue
            record = self._file_record(mapping, relpath, pairs.get(relpath), inner)
            self._add(records, record, warnings)

        for key in sorted(bundles):
            bundle = bundles[key]
            self._add(records, self._bundle_record(bundle), warnings)

        for warning in warnings:
            LOGGER.warning("%s: %s", self.root, warning.describe())
        LOGGER.info(
            "inventory for %s: %d components from %d files, %d warnings",
            self.root,
            len(records),
            len(relpaths),
            len(warnings),
        )
        return Inventory(root=self.root, records=records, warnings=tuple(warnings))

    def _walk(self, progress_cb: ProgressCallback | None) -> list[str]:
        rules = IgnoreRules()
        relpaths: list[str] = []
        dirs_scanned = 0
        last_progress = 0.0

        for current_dir, dirs, files in os.walk(self.root, topdown=True):
            current_path = Path(current_dir)
            rel_dir = PurePosixPath(".")
            if current_path != self.root:
                rel_dir = PurePosixPath(current_path.relative_to(self.root).as_posix())
            dirs_scanned += 1

            now = time.monotonic()
            if progress_cb is not None and (now - last_progress) >= 0.2:
                progress_cb(rel_dir, dirs_scanned, len(relpaths))
                last_progress = now

            if self.config.use_forceignore:
                rules.load_if_exists(self.root, rel_dir)

            kept_dirs: list[str] = []
            for dir_name in sorted(dirs):
                if is_excluded_folder_name(dir_name):
                    continue
                child_rel = (
                    PurePosixPath(dir_name)
                    if rel_dir == PurePosixPath(".")
                    else rel_dir / dir_name
                )
                if rules.is_ignored(child_rel, is_dir=True):
                    continue
                kept_dirs.append(dir_name)
            dirs[:] = kept_dirs

            for filename in sorted(files):
                if is_excluded_file_name(filename):
                    continue
                child_rel = (
                    PurePosixPath(filename)
                    if rel_dir == PurePosixPath(".")
                    else rel_dir / filename
                )
                if rules.is_ignored(child_rel, is_dir=False):
                    continue
                if not (self.root / child_rel.as_posix()).is_file():
                    continue
                relpaths.append(child_rel.as_posix())

        if progress_cb is not None:
            progress_cb(PurePosixPath("."), dirs_scanned, len(relpaths))

        return sorted(relpaths)

    def _resolve_mapping(
        self, dir_parts: tuple[str, ...]
    ) -> tuple[TypeMapping | None, int]:
        for index, part in enumerate(dir_parts):
            mapping = self.config.type_map.get(part)
            if mapping is not None:
                return mapping, index
        return None, -1

    def _file_record(
        self,
        mapping: TypeMapping,
        relpath: str,
        sidecar: str | None,
        inner: tuple[str, ...],
    ) -> ComponentRecord:
        folder_path = tuple(normalize_text(part) for part in inner[:-1])
        if sidecar is None or sidecar == f"{relpath}{SIDECAR_SUFFIX}":
            name = normalize_text(strip_extension(inner[-1]))
        else:
            # Stem-paired content files (documents) keep their extension.
            name = normalize_text(inner[-1])
        if mapping.layout == LAYOUT_FOLDER and folder_path:
            full_name = "/".join((*folder_path, name))
        else:
            full_name = name
        members = (relpath,) if sidecar is None else (relpath, sidecar)
        return ComponentRecord(
            type=mapping.type,
            full_name=full_name,
            file_path=normalize_text(relpath),
            content_hash=component_digest(
                self.root / relpath,
                None if sidecar is None else self.root / sidecar,
            ),
            folder_path=folder_path,
            member_paths=members,
        )

    def _bundle_record(self, bundle: _Bundle) -> ComponentRecord:
        members = sorted(bundle.members)
        digest = bundle_digest(
            (member, self.root / relpath) for member, relpath in members
        )
        relpaths = tuple(relpath for _member, relpath in members)
        file_path = bundle.base or relpaths[0]
        return ComponentRecord(
            type=bundle.type,
            full_name=normalize_text(bundle.name),
            file_path=normalize_text(file_path),
            content_hash=digest,
            folder_path=(),
            member_paths=relpaths,
        )

    def _record_from_sidecar(
        self,
        relpath: str,
        filename: str,
        paired_sidecar: str | None,
        warnings: list[InventoryWarning],
    ) -> ComponentRecord | None:
        primary = relpath
        sidecar = paired_sidecar
        if sidecar is None and filename.endswith(SIDECAR_SUFFIX):
            sidecar = relpath

        type_name = read_sidecar_type(self.root / sidecar) if sidecar else None
        if type_name is None:
            folder = PurePosixPath(relpath).parent.as_posix()
            warnings.append(
                InventoryWarning(
                    kind=InventoryErrorKind.UNMAPPED_TYPE,
                    path=normalize_text(relpath),
                    key=None,
                    message=f"no metadata type mapped for folder {folder!r}",
                )
            )
            return None

        extra_sidecar = None if sidecar == primary else sidecar
        members = (primary,) if extra_sidecar is None else (primary, extra_sidecar)
        stem_paired = (
            extra_sidecar is not None
            and extra_sidecar != f"{primary}{SIDECAR_SUFFIX}"
        )
        name = filename if stem_paired else strip_extension(filename)
        return ComponentRecord(
            type=type_name,
            full_name=normalize_text(name),
            file_path=normalize_text(primary),
            content_hash=component_digest(
                self.root / primary,
                None if extra_sidecar is None else self.root / extra_sidecar,
            ),
            folder_path=(),
            member_paths=members,
        )

    def _add(
        self,
        records: dict[ComponentKey, ComponentRecord],
        record: ComponentRecord,
        warnings: list[InventoryWarning],
    ) -> None:
        existing = records.get(record.key)
        if existing is None:
            records[record.key] = record
            return
        if existing.content_hash == record.content_hash:
            LOGGER.debug(
                "identical copies of %s: keeping %s, ignoring %s",
                "/".join(record.key),
                existing.file_path,
                record.file_path,
            )
            return

        existing_top = not existing.folder_path
        record_top = not record.folder_path
        if existing_top != record_top:
            kept, shadowed = (existing, record) if existing_top else (record, existing)
            records[record.key] = kept
            warnings.append(
                InventoryWarning(
                    kind=InventoryErrorKind.DUPLICATE_COMPONENT,
                    path=shadowed.file_path,
                    key=record.key,
                    message=f"shadowed by {kept.file_path}",
                )
            )
            return

        raise InventoryError(
            InventoryErrorKind.DUPLICATE_COMPONENT,
            path=record.file_path,
            key=record.key,
            message=(
                f"{'/'.join(record.key)} resolves from both {existing.file_path} "
                f"and {record.file_path} with different content"
            ),
        )


def build_inventory(
    root: Path,
    config: EngineConfig,
    progress_cb: ProgressCallback | None = None,
) -> Inventory:
    return InventoryBuilder(root, config).build(progress_cb=progress_cb)
