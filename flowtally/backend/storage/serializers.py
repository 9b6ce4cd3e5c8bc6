"""
storage/serializers.py

The two co-derived snapshot representations of a ConsolidatedState.

Delimited text (sorted by GroupKey):
    Src,Dst,Date,Count,Sum,Average,StdDev

Structured document (pydantic):
    {"tag", "version", "generated_at", "consumed_batches": [...],
     "aggregates": [{source, destination, date, count, sum, sumSquares,
                     average, stddev}, ...]}

The CSV has no sum-of-squares column; decoding rebuilds it as
count * (stddev² + mean²), which matches within floating tolerance.
"""

from __future__ import annotations

import csv
import datetime as dt
import io

from pydantic import BaseModel, ConfigDict, Field

from ..aggregation.models import Accumulator, ConsolidatedState, GroupKey
from ..ingest.parser import parse_csv_bytes

SNAPSHOT_CSV_HEADER: tuple[str, ...] = (
    "Src", "Dst", "Date", "Count", "Sum", "Average", "StdDev",
)


class AggregateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str
    destination: str
    date: dt.date
    count: int = Field(ge=0)
    sum: float
    sum_squares: float = Field(alias="sumSquares", ge=0)
    average: float
    stddev: float

    @classmethod
    def from_entry(cls, key: GroupKey, acc: Accumulator) -> "AggregateRecord":
        return cls(
            source=key.source,
            destination=key.destination,
            date=key.date,
            count=acc.count,
            sum=acc.sum,
            sum_squares=acc.sum_squares,
            average=acc.mean,
            stddev=acc.stddev,
        )

    def to_entry(self) -> tuple[GroupKey, Accumulator]:
        return (
            GroupKey(self.source, self.destination, self.date),
            Accumulator(self.count, self.sum, self.sum_squares),
        )


class SnapshotDocument(BaseModel):
    tag: str = "latest"
    version: int = 0
    generated_at: dt.datetime
    consumed_batches: list[str] = []
    aggregates: list[AggregateRecord] = []


# ---------------------------------------------------------------------------
# Structured document
# ---------------------------------------------------------------------------

def state_to_document(
    state: ConsolidatedState,
    tag: str = "latest",
    version: int = 0,
    generated_at: dt.datetime | None = None,
) -> SnapshotDocument:
    return SnapshotDocument(
        tag=tag,
        version=version,
        generated_at=generated_at or dt.datetime.now(dt.timezone.utc),
        consumed_batches=sorted(state.consumed_batches),
        aggregates=[AggregateRecord.from_entry(k, a) for k, a in state.sorted_items()],
    )


def document_to_state(doc: SnapshotDocument) -> ConsolidatedState:
    return ConsolidatedState(
        (record.to_entry() for record in doc.aggregates),
        consumed_batches=doc.consumed_batches,
    )


def encode_snapshot_json(doc: SnapshotDocument) -> str:
    return doc.model_dump_json(by_alias=True, indent=2)


def decode_snapshot_json(text: str | bytes) -> SnapshotDocument:
    return SnapshotDocument.model_validate_json(text)


# ---------------------------------------------------------------------------
# Delimited text
# ---------------------------------------------------------------------------

def snapshot_csv_row(key: GroupKey, acc: Accumulator) -> list[str]:
    return [
        key.source,
        key.destination,
        key.date.isoformat(),
        str(acc.count),
        repr(acc.sum),
        repr(acc.mean),
        repr(acc.stddev),
    ]


def encode_snapshot_csv(entries) -> str:
    """
    Render (GroupKey, Accumulator) pairs as snapshot CSV.

    `entries` is a ConsolidatedState or any iterable of pairs; rows are
    always written in GroupKey order.
    """
    pairs = entries.sorted_items() if isinstance(entries, ConsolidatedState) else sorted(entries)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(SNAPSHOT_CSV_HEADER)
    for key, acc in pairs:
        writer.writerow(snapshot_csv_row(key, acc))
    return buf.getvalue()


def decode_snapshot_csv(data: str | bytes) -> ConsolidatedState:
    """
    Parse snapshot CSV back into state.

    Lines starting with '#' (export markers) are ignored. The CSV does not
    carry the consumed-batch ledger, so the result has none.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    rows = [r for r in parse_csv_bytes(data) if not r[0].lstrip().startswith("#")]
    if rows and tuple(c.strip() for c in rows[0]) == SNAPSHOT_CSV_HEADER:
        rows = rows[1:]

    entries: dict[GroupKey, Accumulator] = {}
    for row in rows:
        src, dst, date, count, total, mean, stddev = (c.strip() for c in row[:7])
        n = int(count)
        mean_f = float(mean)
        sd = float(stddev)
        sum_squares = max(0.0, n * (sd * sd + mean_f * mean_f)) if n else 0.0
        key = GroupKey(src, dst, dt.date.fromisoformat(date))
        entries[key] = Accumulator(n, float(total) if n else 0.0, sum_squares)
    return ConsolidatedState(entries)
