from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypeAlias

from .errors import InventoryErrorKind

ComponentKey: TypeAlias = tuple[str, str]


class DeltaStatus(str, Enum):
    ADDED = "Added"
    CHANGED = "Changed"
    REMOVED = "Removed"
    UNCHANGED = "Unchanged"


class EmissionCode(str, Enum):
    WRITTEN = "written"
    NOTHING_TO_DEPLOY = "nothing_to_deploy"


@dataclass(frozen=True)
class ComponentRecord:
    type: str
    full_name: str
    file_path: str
    content_hash: bytes
    folder_path: tuple[str, ...] = ()
    member_paths: tuple[str, ...] = ()

    @property
    def key(self) -> ComponentKey:
        return (self.type, self.full_name)

    @property
    def hash_hex(self) -> str:
        return self.content_hash.hex()


@dataclass(frozen=True)
class InventoryWarning:
    kind: InventoryErrorKind
    path: str
    key: ComponentKey | None
    message: str

    def describe(self) -> str:
        where = self.path if self.key is None else f"{self.path} [{'/'.join(self.key)}]"
        return f"{self.kind.value}: {self.message}: {where}"


@dataclass(frozen=True)
class Inventory:
    root: Path
    records: dict[ComponentKey, ComponentRecord]
    warnings: tuple[InventoryWarning, ...] = ()

    def __len__(self) -> int:
        return len(self.records)


def sort_key(type_name: str, full_name: str) -> tuple[str, str, str]:
    return (type_name, full_name.lower(), full_name)


@dataclass(frozen=True)
class DeltaEntry:
    type: str
    full_name: str
    status: DeltaStatus
    source_hash: bytes | None = None
    dest_hash: bytes | None = None

    @property
    def key(self) -> ComponentKey:
        return (self.type, self.full_name)


@dataclass(frozen=True)
class DeltaSet:
    entries: tuple[DeltaEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def keys(self) -> list[ComponentKey]:
        return [entry.key for entry in self.entries]

    def with_status(self, *statuses: DeltaStatus) -> list[DeltaEntry]:
        wanted = set(statuses)
        return [entry for entry in self.entries if entry.status in wanted]

    def changed(self) -> list[DeltaEntry]:
        return self.with_status(DeltaStatus.ADDED, DeltaStatus.CHANGED)

    def removed(self) -> list[DeltaEntry]:
        return self.with_status(DeltaStatus.REMOVED)

    def counts(self) -> dict[DeltaStatus, int]:
        counter = Counter(entry.status for entry in self.entries)
        return {status: counter.get(status, 0) for status in DeltaStatus}


@dataclass(frozen=True)
class EmissionResult:
    path: Path
    member_count: int
    code: EmissionCode

    @property
    def nothing_to_deploy(self) -> bool:
        return self.code == EmissionCode.NOTHING_TO_DEPLOY


@dataclass(frozen=True)
class ComparisonResult:
    source: Inventory
    destination: Inventory
    delta: DeltaSet
    source_scan_seconds: float = 0.0
    destination_scan_seconds: float = 0.0

    @property
    def warnings(self) -> tuple[InventoryWarning, ...]:
        return self.source.warnings + self.destination.warnings
