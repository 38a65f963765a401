from __future__ import annotations

from enum import Enum


class InventoryErrorKind(str, Enum):
    DUPLICATE_COMPONENT = "DuplicateComponent"
    UNMAPPED_TYPE = "UnmappedType"


class EmissionErrorKind(str, Enum):
    EMPTY_MANIFEST = "EmptyManifest"


class OrgDeltaError(Exception):
    """Base class for errors a user can act on."""


class ConfigError(OrgDeltaError):
    pass


class InventoryError(OrgDeltaError):
    def __init__(
        self,
        kind: InventoryErrorKind,
        path: str,
        key: tuple[str, str] | None,
        message: str,
    ) -> None:
        self.kind = kind
        self.path = path
        self.key = key
        self.message = message
        super().__init__(f"{kind.value}: {message} ({path})")


class EmissionError(OrgDeltaError):
    def __init__(self, kind: EmissionErrorKind, path: str, message: str) -> None:
        self.kind = kind
        self.path = path
        self.message = message
        super().__init__(f"{kind.value}: {message} ({path})")


class OrgClientError(OrgDeltaError):
    def __init__(
        self, command: list[str], message: str, exit_code: int | None = None
    ) -> None:
        self.command = list(command)
        self.message = message
        self.exit_code = exit_code
        super().__init__(f"{' '.join(self.command[:4])}: {message}")


class MalformedRecordError(ValueError):
    """A record passed between stages violates the record contract."""
