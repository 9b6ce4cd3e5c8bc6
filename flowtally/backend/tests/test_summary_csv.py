"""
tests/test_summary_csv.py

Tests for ingest/summary_csv.py — the PartialBatch file format.
"""

from __future__ import annotations

import codecs
import datetime as dt

from flowtally.backend.aggregation.merge import batch_id_for
from flowtally.backend.aggregation.models import GroupKey, PartialBatch
from flowtally.backend.ingest.summary_csv import (
    decode_partial_batch,
    encode_partial_batch,
    read_partial_batch,
)

D1 = dt.date(2024, 1, 1)
D2 = dt.date(2024, 1, 2)


def _batch() -> PartialBatch:
    return PartialBatch(
        batch_id="b1",
        totals={
            GroupKey("B", "A", D1): 0.1,
            GroupKey("A", "B", D2): 80.0,
            GroupKey("A", "B", D1): 150.5,
        },
    )


class TestEncode:

    def test_layout(self):
        text = encode_partial_batch(_batch()).decode("utf-8")
        assert text.splitlines() == [
            "# batch: b1",
            "Src,Dst,Date,Total",
            "A,B,2024-01-01,150.5",
            "A,B,2024-01-02,80.0",
            "B,A,2024-01-01,0.1",
        ]

    def test_without_id(self):
        text = encode_partial_batch(_batch(), include_id=False).decode("utf-8")
        assert text.startswith("Src,Dst,Date,Total\n")


class TestDecode:

    def test_reads_back_embedded_id_and_exact_totals(self):
        batch = decode_partial_batch(encode_partial_batch(_batch()), source="s.csv")
        assert batch.batch_id == "b1"
        assert batch.source == "s.csv"
        assert dict(batch.totals) == dict(_batch().totals)

    def test_explicit_id_overrides_embedded(self):
        batch = decode_partial_batch(encode_partial_batch(_batch()), batch_id="override")
        assert batch.batch_id == "override"

    def test_missing_id_falls_back_to_content_hash(self):
        data = b"Src,Dst,Date,Total\nA,B,2024-01-01,1.0\n"
        batch_id, result = read_partial_batch(data)
        assert batch_id == batch_id_for(data)
        assert result.totals == {GroupKey("A", "B", D1): 1.0}

    def test_malformed_summary_rows_are_skipped(self):
        data = b"Src,Dst,Date,Total\nA,B,2024-01-01,1.0\nA,B\nA,B,2024-01-01,oops\n"
        _, result = read_partial_batch(data)
        assert result.rejected == 2
        assert result.totals == {GroupKey("A", "B", D1): 1.0}

    def test_same_bytes_same_id(self):
        data = b"Src,Dst,Date,Total\nA,B,2024-01-01,1.0\n"
        assert decode_partial_batch(data).batch_id == decode_partial_batch(data).batch_id

    def test_bom_before_metadata_line(self):
        """Editors that save with a BOM must not hide the embedded id."""
        data = codecs.BOM_UTF8 + encode_partial_batch(_batch())
        batch_id, result = read_partial_batch(data)
        assert batch_id == "b1"
        assert result.header_skipped
        assert result.rejected == 0
        assert len(result.totals) == 3

    def test_bom_does_not_change_fallback_id(self):
        data = b"Src,Dst,Date,Total\nA,B,2024-01-01,1.0\n"
        assert read_partial_batch(codecs.BOM_UTF8 + data)[0] == batch_id_for(data)
