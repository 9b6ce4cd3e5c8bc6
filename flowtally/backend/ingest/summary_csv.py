"""
ingest/summary_csv.py

PartialBatch file format.

    # batch: 3f9a…            optional metadata line carrying the batch id
    Src,Dst,Date,Total
    10.0.0.1,10.0.0.2,2024-01-01,150.5

One row per GroupKey, rows in GroupKey order, ISO calendar dates. Totals are
written with repr() so a decode of an encode reproduces the exact floats.

The batch id travels with the file so that a unit keeps the identifier it
was given at summarize time. Files without the metadata line fall back to
the SHA-256 of their bytes (any UTF-8 BOM removed).
"""

from __future__ import annotations

import codecs
import csv
import io

from ..aggregation.merge import batch_id_for
from ..aggregation.models import PartialBatch
from .extractor import ExtractionResult, extract
from .parser import format_date, parse_csv_bytes
from .schema import PARTIAL_BATCH_HEADER, PARTIAL_BATCH_SCHEMA

_BATCH_PREFIX = "# batch:"


def encode_partial_batch(batch: PartialBatch, include_id: bool = True) -> bytes:
    buf = io.StringIO()
    if include_id:
        buf.write(f"{_BATCH_PREFIX} {batch.batch_id}\n")
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(PARTIAL_BATCH_HEADER)
    for key, total in batch.items():
        writer.writerow([key.source, key.destination, format_date(key.date), repr(float(total))])
    return buf.getvalue().encode("utf-8")


def _strip_bom(data: bytes) -> bytes:
    return data[len(codecs.BOM_UTF8):] if data.startswith(codecs.BOM_UTF8) else data


def _split_metadata(data: bytes) -> tuple[str | None, bytes]:
    """Strip leading '#' lines; return the embedded batch id if present."""
    batch_id = None
    body = _strip_bom(data)
    while body.startswith(b"#"):
        line, _, body = body.partition(b"\n")
        text = line.decode("utf-8").strip()
        if text.startswith(_BATCH_PREFIX):
            batch_id = text[len(_BATCH_PREFIX):].strip() or None
    return batch_id, body


def read_partial_batch(data: bytes) -> tuple[str, ExtractionResult]:
    """Decode a summary file into (batch id, extraction result)."""
    embedded_id, body = _split_metadata(data)
    result = extract(parse_csv_bytes(body), PARTIAL_BATCH_SCHEMA)
    return embedded_id or batch_id_for(_strip_bom(data)), result


def decode_partial_batch(
    data: bytes,
    batch_id: str | None = None,
    source: str = "",
) -> PartialBatch:
    """
    Parse a summary file into a PartialBatch.

    Malformed rows are skipped by the same policy as raw extraction; an
    explicit `batch_id` overrides the embedded one.
    """
    embedded_id, result = read_partial_batch(data)
    return result.to_batch(batch_id or embedded_id, source=source)
