"""Content digests used for change detection.

Digests depend on file bytes only, never on timestamps, so two retrievals of
the same component from different orgs hash identically.
"""

from __future__ import annotations

from collections.abc import Iterable
from hashlib import sha256
from pathlib import Path
from typing import Any, BinaryIO

_READ_CHUNK_SIZE = 1024 * 1024


def _iter_file_chunks(handle: BinaryIO):
    while True:
        chunk = handle.read(_READ_CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def _update_from_file(hasher: Any, path: Path) -> None:
    with path.open("rb") as handle:
        for chunk in _iter_file_chunks(handle):
            hasher.update(chunk)


def component_digest(primary: Path, sidecar: Path | None = None) -> bytes:
    """Digest of the primary file bytes followed by the sidecar bytes."""
    hasher = sha256()
    _update_from_file(hasher, primary)
    if sidecar is not None:
        _update_from_file(hasher, sidecar)
    return hasher.digest()


def bundle_digest(members: Iterable[tuple[str, Path]]) -> bytes:
    """Digest of a multi-file component.

    Each member contributes its bundle-relative path (as the raw file name
    bytes), a NUL byte, its content and another NUL byte, in sorted path
    order.
    """
    hasher = sha256()
    for relpath, path in sorted(members, key=lambda item: item[0]):
        hasher.update(relpath.encode("utf-8", "surrogateescape"))
        hasher.update(b"\0")
        _update_from_file(hasher, path)
        hasher.update(b"\0")
    return hasher.digest()
