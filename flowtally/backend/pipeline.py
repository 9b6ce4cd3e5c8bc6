"""
backend/pipeline.py

Summarize stage: raw input units → PartialBatches, in parallel.

Each unit (one file's bytes) is extracted independently, so units can be
reduced on a thread pool; the Accumulator algebra makes the later merge
order-independent. Every unit keeps its own batch id (SHA-256 of its
bytes) so a redelivered unit is recognised by the merge engine.

Results are returned in input order regardless of completion order.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from .aggregation.merge import batch_id_for
from .aggregation.models import PartialBatch
from .ingest.extractor import RejectedRow, extract
from .ingest.parser import parse_csv_bytes
from .ingest.schema import RecordSchema, flow_record_schema
from .metrics import METRICS

logger = logging.getLogger(__name__)

_WORKERS_DEFAULT = 4


@dataclass(slots=True)
class InputUnit:
    """One delivery of raw bytes (typically one file)."""

    name: str
    data: bytes


@dataclass
class SummarizedUnit:
    batch: PartialBatch
    rejected_samples: list[RejectedRow] = field(default_factory=list)
    header_skipped: bool = False


def read_units(paths: Iterable[str | os.PathLike]) -> list[InputUnit]:
    return [InputUnit(str(p), Path(p).read_bytes()) for p in paths]


def summary_name(unit_name: str, batch_id: str | None = None) -> str:
    """
    `incoming/day1.csv` → `day1_summary.csv`.

    With `batch_id` the first 8 characters of the id are added to the stem
    (`day1.3f9a0c1e_summary.csv`).
    """
    stem = Path(unit_name).name
    if stem.lower().endswith(".csv"):
        stem = stem[:-4]
    if batch_id:
        stem = f"{stem}.{batch_id[:8]}"
    return f"{stem}_summary.csv"


def summary_names(batches: Sequence[PartialBatch]) -> list[str]:
    """
    One summary file name per batch, never shared by two different batches.

    Units from different directories can have the same base name
    (`a/day1.csv`, `b/day1.csv`). The first batch keeps the plain name and
    every later batch with a different id gets its id-suffixed name.
    Redelivered units share a batch id and therefore a name.
    """
    owners: dict[str, str] = {}
    names = []
    for batch in batches:
        name = summary_name(batch.source)
        if owners.setdefault(name, batch.batch_id) != batch.batch_id:
            name = summary_name(batch.source, batch.batch_id)
            logger.warning(
                "%s shares its base name with another unit — writing %s instead",
                batch.source, name,
            )
            owners.setdefault(name, batch.batch_id)
        names.append(name)
    return names


def summarize_unit(
    unit: InputUnit,
    schema: RecordSchema,
    max_samples: int = 20,
) -> SummarizedUnit:
    """Reduce one unit to a PartialBatch (one total per GroupKey)."""
    result = extract(parse_csv_bytes(unit.data), schema, max_samples=max_samples)
    batch = result.to_batch(batch_id_for(unit.data), source=unit.name)
    METRICS.units_summarized.inc()
    logger.info(
        "Summarized %s: %d row(s) → %d group(s), %d rejected",
        unit.name, result.rows_read, len(batch), result.rejected,
    )
    return SummarizedUnit(batch, result.rejected_samples, result.header_skipped)


def summarize_units(
    units: Sequence[InputUnit],
    schema: RecordSchema | None = None,
    max_workers: int = _WORKERS_DEFAULT,
    max_samples: int = 20,
) -> list[SummarizedUnit]:
    """
    Summarize many units concurrently.

    A unit that fails outright (undecodable bytes) propagates its exception;
    malformed rows never do.
    """
    schema = schema or flow_record_schema()
    if len(units) <= 1 or max_workers <= 1:
        return [summarize_unit(u, schema, max_samples) for u in units]

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="summarize") as pool:
        futures = [pool.submit(summarize_unit, u, schema, max_samples) for u in units]
        return [f.result() for f in futures]
