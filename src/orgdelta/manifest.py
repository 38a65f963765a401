"""Deploy and destructive-changes manifests (``package.xml``).

Rendering is a pure function of the selected entries and the API version, so
the same delta always produces byte-identical files.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .config import METADATA_NAMESPACE
from .errors import EmissionError, EmissionErrorKind
from .files import atomic_write_text
from .models import DeltaEntry, DeltaSet, EmissionCode, EmissionResult, sort_key

LOGGER = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
DEPLOY_MANIFEST_NAME = "package.xml"
DESTRUCTIVE_MANIFEST_NAME = "destructiveChanges.xml"


@dataclass(frozen=True)
class ParsedManifest:
    types: dict[str, list[str]]
    version: str | None

    def member_keys(self) -> set[tuple[str, str]]:
        return {(name, member) for name, members in self.types.items() for member in members}


def build_manifest(entries: Iterable[DeltaEntry]) -> dict[str, list[str]]:
    """Group entries by type, keeping delta order and dropping repeats."""
    ordered = sorted(entries, key=lambda entry: sort_key(entry.type, entry.full_name))
    members: dict[str, list[str]] = {}
    for entry in ordered:
        names = members.setdefault(entry.type, [])
        if entry.full_name not in names:
            names.append(entry.full_name)
    return members


def render_manifest(members: dict[str, list[str]], api_version: str) -> str:
    package = ET.Element("Package", {"xmlns": METADATA_NAMESPACE})
    for type_name in sorted(members):
        types = ET.SubElement(package, "types")
        for member in members[type_name]:
            ET.SubElement(types, "members").text = member
        ET.SubElement(types, "name").text = type_name
    ET.SubElement(package, "version").text = api_version
    ET.indent(package, space="    ")
    body = ET.tostring(package, encoding="unicode")
    return f"{XML_DECLARATION}\n{body}\n"


def parse_manifest(source: Path | str) -> ParsedManifest:
    """Read a manifest back from a path or from its markup."""
    if isinstance(source, Path):
        root = ET.parse(source).getroot()
    else:
        root = ET.fromstring(source)

    def local(tag: str) -> str:
        return tag.rpartition("}")[2]

    types: dict[str, list[str]] = {}
    version: str | None = None
    for child in root:
        if local(child.tag) == "version":
            version = (child.text or "").strip() or None
            continue
        if local(child.tag) != "types":
            continue
        name = None
        names: list[str] = []
        for item in child:
            text = (item.text or "").strip()
            if local(item.tag) == "name":
                name = text
            elif local(item.tag) == "members":
                names.append(text)
        if name:
            types.setdefault(name, []).extend(names)
    return ParsedManifest(types=types, version=version)


def emit_manifest(
    entries: list[DeltaEntry],
    path: Path,
    api_version: str,
    *,
    strict: bool = False,
    label: str = "deploy",
) -> EmissionResult:
    if not entries and strict:
        raise EmissionError(
            EmissionErrorKind.EMPTY_MANIFEST,
            path=str(path),
            message=f"no components selected for the {label} manifest",
        )
    members = build_manifest(entries)
    atomic_write_text(path, render_manifest(members, api_version))
    count = sum(len(names) for names in members.values())
    code = EmissionCode.WRITTEN if count else EmissionCode.NOTHING_TO_DEPLOY
    LOGGER.info("%s manifest %s: %d members (%s)", label, path, count, code.value)
    return EmissionResult(path=path, member_count=count, code=code)


def emit_deploy_manifest(
    delta: DeltaSet, path: Path, api_version: str, *, strict: bool = False
) -> EmissionResult:
    return emit_manifest(delta.changed(), path, api_version, strict=strict, label="deploy")


def emit_destructive_manifest(
    delta: DeltaSet, path: Path, api_version: str, *, strict: bool = False
) -> EmissionResult:
    return emit_manifest(
        delta.removed(), path, api_version, strict=strict, label="destructive"
    )
