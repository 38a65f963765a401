from __future__ import annotations

import csv
import io
from pathlib import Path

from rich.table import Table

from .files import atomic_write_text
from .models import DeltaSet, DeltaStatus

REPORT_HEADER = ("Type", "FullName", "Status", "SourceHash", "DestHash")
REPORT_NAME = "changes.csv"

_STATUS_STYLES = {
    DeltaStatus.ADDED: "green",
    DeltaStatus.CHANGED: "yellow",
    DeltaStatus.REMOVED: "red",
    DeltaStatus.UNCHANGED: "dim",
}


def render_report(delta: DeltaSet, include_unchanged: bool = False) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(REPORT_HEADER)
    for entry in delta:
        if entry.status == DeltaStatus.UNCHANGED and not include_unchanged:
            continue
        writer.writerow(
            (
                entry.type,
                entry.full_name,
                entry.status.value,
                entry.source_hash.hex() if entry.source_hash is not None else "",
                entry.dest_hash.hex() if entry.dest_hash is not None else "",
            )
        )
    return buffer.getvalue()


def write_report(delta: DeltaSet, path: Path, include_unchanged: bool = False) -> Path:
    atomic_write_text(path, render_report(delta, include_unchanged=include_unchanged))
    return path


def summary_table(delta: DeltaSet, title: str = "Delta summary") -> Table:
    table = Table(title=title)
    table.add_column("Type")
    for status in DeltaStatus:
        table.add_column(status.value, justify="right", style=_STATUS_STYLES[status])

    per_type: dict[str, dict[DeltaStatus, int]] = {}
    for entry in delta:
        counts = per_type.setdefault(entry.type, {status: 0 for status in DeltaStatus})
        counts[entry.status] += 1
    for type_name in sorted(per_type):
        counts = per_type[type_name]
        table.add_row(type_name, *(str(counts[status]) for status in DeltaStatus))

    totals = delta.counts()
    table.add_section()
    table.add_row("Total", *(str(totals[status]) for status in DeltaStatus))
    return table
