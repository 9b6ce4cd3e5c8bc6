"""
ingest/__init__.py

Public API for the ingest sub-package.
"""

from .extractor import ExtractionResult, RejectedRow, extract, extract_row
from .parser import parse_csv_bytes, parse_date
from .schema import (
    FLOW_RECORD_SCHEMA,
    PARTIAL_BATCH_SCHEMA,
    ColumnSpec,
    RecordSchema,
    flow_record_schema,
)
from .summary_csv import decode_partial_batch, encode_partial_batch

__all__ = [
    "ColumnSpec",
    "ExtractionResult",
    "FLOW_RECORD_SCHEMA",
    "PARTIAL_BATCH_SCHEMA",
    "RecordSchema",
    "RejectedRow",
    "decode_partial_batch",
    "encode_partial_batch",
    "extract",
    "extract_row",
    "flow_record_schema",
    "parse_csv_bytes",
    "parse_date",
]
