from __future__ import annotations

from collections.abc import Iterable, Mapping

from .errors import MalformedRecordError
from .models import (
    ComponentKey,
    ComponentRecord,
    DeltaEntry,
    DeltaSet,
    DeltaStatus,
    sort_key,
)


def _check_record(key: ComponentKey, record: ComponentRecord) -> None:
    if not record.type or not record.full_name:
        raise MalformedRecordError(f"record without type or full name: {record!r}")
    if not isinstance(record.content_hash, bytes):
        raise MalformedRecordError(f"record without a content digest: {record!r}")
    if record.key != key:
        raise MalformedRecordError(
            f"record stored under {key!r} but describes {record.key!r}: {record!r}"
        )


def classify(
    source: Mapping[ComponentKey, ComponentRecord],
    destination: Mapping[ComponentKey, ComponentRecord],
    exempt_types: Iterable[str] = (),
) -> DeltaSet:
    """Classify every component key of both inventories.

    Components only in ``source`` are Added (relative to the destination),
    components only in ``destination`` are Removed. Components on both sides
    are Changed when their digests differ, otherwise Unchanged. Exempt types
    are always Unchanged, whichever side holds them.
    """
    exempt = frozenset(exempt_types)
    for key, record in source.items():
        _check_record(key, record)
    for key, record in destination.items():
        _check_record(key, record)

    entries: list[DeltaEntry] = []
    for key in set(source) | set(destination):
        left = source.get(key)
        right = destination.get(key)
        type_name, full_name = key

        if type_name in exempt:
            status = DeltaStatus.UNCHANGED
        elif right is None:
            status = DeltaStatus.ADDED
        elif left is None:
            status = DeltaStatus.REMOVED
        elif left.content_hash == right.content_hash:
            status = DeltaStatus.UNCHANGED
        else:
            status = DeltaStatus.CHANGED

        entries.append(
            DeltaEntry(
                type=type_name,
                full_name=full_name,
                status=status,
                source_hash=None if left is None else left.content_hash,
                dest_hash=None if right is None else right.content_hash,
            )
        )

    entries.sort(key=lambda entry: sort_key(entry.type, entry.full_name))
    return DeltaSet(entries=tuple(entries))
