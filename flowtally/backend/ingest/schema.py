"""
ingest/schema.py

Explicit schema descriptors for delimited input.

A RecordSchema names the columns the extractor needs, their types and the
token set used to recognise a header row. Nothing is inferred at runtime
from loosely matching cell contents beyond that token set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Sequence

if TYPE_CHECKING:
    from ..config import Settings

ColumnKind = Literal["string", "date", "float", "integer"]

DEFAULT_HEADER_TOKENS: frozenset[str] = frozenset(
    {"src", "source", "dst", "destination", "date"}
)


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    name: str
    index: int
    kind: ColumnKind = "string"


@dataclass(frozen=True)
class RecordSchema:
    """
    Column layout for one kind of delimited input.

    The four role columns build the (GroupKey, value) pair; `extra` columns
    are required and type-checked but do not contribute to the value.
    """

    name: str
    source: ColumnSpec
    destination: ColumnSpec
    date: ColumnSpec
    metric: ColumnSpec
    extra: tuple[ColumnSpec, ...] = ()
    header_tokens: frozenset[str] = DEFAULT_HEADER_TOKENS

    def __post_init__(self) -> None:
        if self.source.kind != "string" or self.destination.kind != "string":
            raise ValueError("source and destination columns must be strings")
        if self.date.kind != "date":
            raise ValueError("date column must have kind 'date'")
        if self.metric.kind not in ("float", "integer"):
            raise ValueError("metric column must be numeric")
        indexes = [c.index for c in self.columns]
        if min(indexes) < 0:
            raise ValueError("column indexes must be >= 0")
        if len(set(indexes)) != len(indexes):
            raise ValueError(f"schema {self.name!r} maps two columns to one position")

    @property
    def columns(self) -> tuple[ColumnSpec, ...]:
        return (self.source, self.destination, self.date, self.metric, *self.extra)

    @property
    def min_fields(self) -> int:
        return max(c.index for c in self.columns) + 1

    def is_header(self, row: Sequence[str]) -> bool:
        """True if the row's leading token contains any header token."""
        if not row:
            return False
        first = row[0].strip().lower()
        return any(token in first for token in self.header_tokens)


def flow_record_schema(cfg: "Settings | None" = None) -> RecordSchema:
    """
    Raw flow-export layout, column positions taken from settings.

    The summed metric is the flow duration; the forward-packet count must
    be a valid integer for the row to be accepted.
    """
    if cfg is None:
        from ..config import settings as cfg
    return RecordSchema(
        name="flow_record",
        source=ColumnSpec("src_ip", cfg.RAW_SRC_COLUMN),
        destination=ColumnSpec("dst_ip", cfg.RAW_DST_COLUMN),
        date=ColumnSpec("timestamp", cfg.RAW_TIMESTAMP_COLUMN, "date"),
        metric=ColumnSpec("flow_duration", cfg.RAW_METRIC_COLUMN, "float"),
        extra=(ColumnSpec("tot_fwd_pkts", cfg.RAW_PACKETS_COLUMN, "integer"),),
        header_tokens=frozenset(cfg.HEADER_TOKENS),
    )


FLOW_RECORD_SCHEMA = RecordSchema(
    name="flow_record",
    source=ColumnSpec("src_ip", 1),
    destination=ColumnSpec("dst_ip", 3),
    date=ColumnSpec("timestamp", 6, "date"),
    metric=ColumnSpec("flow_duration", 7, "float"),
    extra=(ColumnSpec("tot_fwd_pkts", 8, "integer"),),
)

PARTIAL_BATCH_SCHEMA = RecordSchema(
    name="partial_batch",
    source=ColumnSpec("Src", 0),
    destination=ColumnSpec("Dst", 1),
    date=ColumnSpec("Date", 2, "date"),
    metric=ColumnSpec("Total", 3, "float"),
)

PARTIAL_BATCH_HEADER: tuple[str, ...] = ("Src", "Dst", "Date", "Total")
