"""
ingest/extractor.py

Record extractor — turns the rows of one input unit into per-key totals.

Policy (per row):
  - fewer fields than schema.min_fields      → rejected
  - a required field fails to parse          → rejected
  - a required string field is blank         → rejected
  - the row would push its key's total past
    the squarable range (parser.MAX_MAGNITUDE) → rejected
Rejected rows are counted and a bounded number of them are sampled with a
reason; they never abort the unit.

Header detection runs on the first row only (schema.is_header).
Rows that share a GroupKey are summed into one entry, so the resulting
PartialBatch carries exactly one value per key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ..aggregation.models import GroupKey, PartialBatch
from ..errors import MalformedRecord
from ..metrics import METRICS
from .parser import MAX_MAGNITUDE, parse_field
from .schema import RecordSchema

logger = logging.getLogger(__name__)

_MAX_SAMPLES_DEFAULT = 20


@dataclass(slots=True)
class RejectedRow:
    """One sampled malformed row."""

    line: int
    """1-based position of the row within its unit (header included)."""

    reason: str
    row: list[str]


@dataclass
class ExtractionResult:
    """Per-unit extraction output: totals plus data-quality counters."""

    totals: dict[GroupKey, float] = field(default_factory=dict)
    rows_read: int = 0
    """Data rows examined (header excluded)."""

    rejected: int = 0
    rejected_samples: list[RejectedRow] = field(default_factory=list)
    header_skipped: bool = False

    @property
    def accepted(self) -> int:
        return self.rows_read - self.rejected

    def to_batch(self, batch_id: str, source: str = "") -> PartialBatch:
        return PartialBatch(
            batch_id=batch_id,
            totals=dict(self.totals),
            source=source,
            rows_read=self.rows_read,
            rejected=self.rejected,
        )


def extract_row(row: Sequence[str], schema: RecordSchema) -> tuple[GroupKey, float]:
    """
    Validate one row against the schema and return its contribution.

    Raises:
        MalformedRecord: the row violates the policy above.
    """
    if len(row) < schema.min_fields:
        raise MalformedRecord(
            f"expected at least {schema.min_fields} fields, got {len(row)}", row
        )
    try:
        source = parse_field(row[schema.source.index], "string", schema.source.name)
        destination = parse_field(row[schema.destination.index], "string", schema.destination.name)
        date = parse_field(row[schema.date.index], "date", schema.date.name)
        value = parse_field(row[schema.metric.index], schema.metric.kind, schema.metric.name)
        for column in schema.extra:
            parse_field(row[column.index], column.kind, column.name)
    except MalformedRecord as exc:
        raise MalformedRecord(exc.reason, row) from None
    return GroupKey(source, destination, date), float(value)


def extract(
    rows: Iterable[Sequence[str]],
    schema: RecordSchema,
    *,
    max_samples: int = _MAX_SAMPLES_DEFAULT,
) -> ExtractionResult:
    """Reduce all valid rows of one unit to one total per GroupKey."""
    result = ExtractionResult()

    for line, row in enumerate(rows, start=1):
        if line == 1 and schema.is_header(row):
            result.header_skipped = True
            continue

        result.rows_read += 1
        try:
            key, value = extract_row(row, schema)
            total = result.totals.get(key, 0.0) + value
            if abs(total) > MAX_MAGNITUDE:
                raise MalformedRecord(f"total for {key!r} would be too large to square", row)
        except MalformedRecord as exc:
            result.rejected += 1
            if len(result.rejected_samples) < max_samples:
                result.rejected_samples.append(RejectedRow(line, exc.reason, list(row)))
            continue

        result.totals[key] = total

    METRICS.rows_read.inc(result.rows_read)
    METRICS.rows_rejected.inc(result.rejected)
    if result.rejected:
        logger.warning(
            "%s: rejected %d of %d row(s) (first: line %d — %s)",
            schema.name,
            result.rejected,
            result.rows_read,
            result.rejected_samples[0].line if result.rejected_samples else 0,
            result.rejected_samples[0].reason if result.rejected_samples else "n/a",
        )
    logger.debug(
        "%s: %d row(s) → %d key(s)", schema.name, result.rows_read, len(result.totals)
    )
    return result
