"""
export/exporter.py

Exact-match reporting over a ConsolidatedState.

export_pair() selects every entry for one (source, destination) pair, in
GroupKey order. No match is a normal outcome: the result then carries an
EmptyExportMarker recording the query and when it ran, and the rendered
CSV ends with a '# No matching rows …' line instead of data rows.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import re
from dataclasses import dataclass, field

from ..aggregation.models import Accumulator, ConsolidatedState, GroupKey
from ..storage.serializers import SNAPSHOT_CSV_HEADER, snapshot_csv_row

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^0-9A-Za-z.:-]")


@dataclass(frozen=True, slots=True)
class EmptyExportMarker:
    source: str
    destination: str
    generated_at: dt.datetime

    def describe(self) -> str:
        return (
            f"No matching rows for src={self.source} dst={self.destination} "
            f"at {self.generated_at.isoformat()}"
        )


@dataclass
class ExportResult:
    source: str
    destination: str
    entries: list[tuple[GroupKey, Accumulator]] = field(default_factory=list)
    marker: EmptyExportMarker | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entries


def lookup(state: ConsolidatedState, key: GroupKey) -> Accumulator | None:
    """Exact-key lookup."""
    return state.get(key)


def export_pair(
    state: ConsolidatedState,
    source: str,
    destination: str,
    *,
    now: dt.datetime | None = None,
) -> ExportResult:
    source = source.strip()
    destination = destination.strip()
    entries = [
        (key, acc)
        for key, acc in state.sorted_items()
        if key.source == source and key.destination == destination
    ]
    result = ExportResult(source, destination, entries)
    if not entries:
        result.marker = EmptyExportMarker(
            source, destination, now or dt.datetime.now(dt.timezone.utc)
        )
        logger.info("Export src=%s dst=%s: no matching rows", source, destination)
    else:
        logger.info("Export src=%s dst=%s: %d row(s)", source, destination, len(entries))
    return result


def render_export_csv(result: ExportResult) -> str:
    """Snapshot-CSV subset for the pair, or header + marker row."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(SNAPSHOT_CSV_HEADER)
    for key, acc in result.entries:
        writer.writerow(snapshot_csv_row(key, acc))
    if result.marker is not None:
        buf.write(f"# {result.marker.describe()}\n")
    return buf.getvalue()


def export_filename(source: str, destination: str) -> str:
    """Filesystem-safe `<src>__<dst>.csv`."""
    safe_src = _UNSAFE_NAME_CHARS.sub("_", source.strip())
    safe_dst = _UNSAFE_NAME_CHARS.sub("_", destination.strip())
    return f"{safe_src}__{safe_dst}.csv"
