"""
tests/test_extractor.py

Tests for ingest/extractor.py — row validation, header handling and
per-key summing within one input unit.
"""

from __future__ import annotations

import datetime as dt

import pytest

from flowtally.backend.aggregation.models import GroupKey
from flowtally.backend.errors import MalformedRecord
from flowtally.backend.ingest.extractor import extract, extract_row
from flowtally.backend.ingest.schema import FLOW_RECORD_SCHEMA, PARTIAL_BATCH_SCHEMA
from flowtally.backend.metrics import METRICS

D1 = dt.date(2024, 1, 1)


def raw_row(src="10.0.0.1", dst="10.0.0.2", ts="01/01/2024 10:00:00", duration="100.5", pkts="3"):
    """Flow-record layout: flow id, src, sport, dst, dport, proto, ts, duration, pkts."""
    return ["flow-1", src, "51000", dst, "443", "6", ts, duration, pkts]


HEADER = ["Src Flow ID", "Src IP", "Src Port", "Dst IP", "Dst Port", "Protocol",
          "Timestamp", "Flow Duration", "Tot Fwd Pkts"]


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset_all()
    yield
    METRICS.reset_all()


# ---------------------------------------------------------------------------
# extract_row
# ---------------------------------------------------------------------------

class TestExtractRow:

    def test_valid_row(self):
        key, value = extract_row(raw_row(), FLOW_RECORD_SCHEMA)
        assert key == GroupKey("10.0.0.1", "10.0.0.2", D1)
        assert value == 100.5

    def test_fields_are_trimmed(self):
        key, _ = extract_row(raw_row(src=" 10.0.0.1 ", dst=" 10.0.0.2"), FLOW_RECORD_SCHEMA)
        assert key.source == "10.0.0.1"
        assert key.destination == "10.0.0.2"

    def test_too_few_fields(self):
        with pytest.raises(MalformedRecord, match="at least 9 fields"):
            extract_row(["10.0.0.1", "10.0.0.2"], FLOW_RECORD_SCHEMA)

    def test_empty_source(self):
        with pytest.raises(MalformedRecord, match="src_ip"):
            extract_row(raw_row(src="  "), FLOW_RECORD_SCHEMA)

    def test_non_numeric_metric(self):
        with pytest.raises(MalformedRecord, match="flow_duration"):
            extract_row(raw_row(duration="fast"), FLOW_RECORD_SCHEMA)

    def test_non_integer_packets(self):
        with pytest.raises(MalformedRecord, match="tot_fwd_pkts"):
            extract_row(raw_row(pkts="3.5"), FLOW_RECORD_SCHEMA)

    def test_bad_timestamp(self):
        with pytest.raises(MalformedRecord, match="timestamp"):
            extract_row(raw_row(ts="yesterday"), FLOW_RECORD_SCHEMA)

    def test_error_carries_row(self):
        row = raw_row(duration="nan")
        with pytest.raises(MalformedRecord) as info:
            extract_row(row, FLOW_RECORD_SCHEMA)
        assert info.value.row == row


# ---------------------------------------------------------------------------
# extract: one unit
# ---------------------------------------------------------------------------

class TestExtract:

    def test_rows_sharing_a_key_are_summed(self):
        """Two rows for the same key on the same day → one entry of 150.5."""
        rows = [raw_row(duration="100.5"), raw_row(ts="01/01/2024 18:30:00", duration="50.0")]
        result = extract(rows, FLOW_RECORD_SCHEMA)
        assert result.totals == {GroupKey("10.0.0.1", "10.0.0.2", D1): 150.5}
        assert result.rows_read == 2
        assert result.rejected == 0

    def test_distinct_dates_are_distinct_keys(self):
        rows = [raw_row(), raw_row(ts="02/01/2024 00:00:01")]
        result = extract(rows, FLOW_RECORD_SCHEMA)
        assert len(result.totals) == 2

    def test_short_row_is_rejected_not_fatal(self):
        """A two-field row is counted as rejected and contributes nothing."""
        rows = [raw_row(), ["10.0.0.1", "10.0.0.2"], raw_row(duration="1.5")]
        result = extract(rows, FLOW_RECORD_SCHEMA)
        assert result.rejected == 1
        assert result.accepted == 2
        assert result.totals[GroupKey("10.0.0.1", "10.0.0.2", D1)] == 102.0
        sample = result.rejected_samples[0]
        assert sample.line == 2
        assert sample.row == ["10.0.0.1", "10.0.0.2"]

    def test_header_skipped_on_first_row(self):
        result = extract([HEADER, raw_row()], FLOW_RECORD_SCHEMA)
        assert result.header_skipped
        assert result.rows_read == 1
        assert result.rejected == 0

    def test_header_detection_uses_first_cell_only(self):
        header = ["Flow ID", *HEADER[1:]]
        result = extract([header, raw_row()], FLOW_RECORD_SCHEMA)
        assert not result.header_skipped
        assert result.rejected == 1

    def test_header_like_row_later_is_rejected(self):
        result = extract([raw_row(), HEADER], FLOW_RECORD_SCHEMA)
        assert not result.header_skipped
        assert result.rejected == 1

    def test_sample_count_is_bounded(self):
        rows = [["bad"]] * 10
        result = extract(rows, FLOW_RECORD_SCHEMA, max_samples=3)
        assert result.rejected == 10
        assert len(result.rejected_samples) == 3

    def test_empty_unit(self):
        result = extract([], FLOW_RECORD_SCHEMA)
        assert result.totals == {}
        assert result.rows_read == 0

    def test_updates_metrics(self):
        extract([raw_row(), ["x"]], FLOW_RECORD_SCHEMA)
        assert METRICS.rows_read.value == 2
        assert METRICS.rows_rejected.value == 1

    def test_to_batch(self):
        result = extract([raw_row()], FLOW_RECORD_SCHEMA)
        batch = result.to_batch("abc", source="day1.csv")
        assert batch.batch_id == "abc"
        assert batch.source == "day1.csv"
        assert len(batch) == 1
        assert batch.rows_read == 1


# ---------------------------------------------------------------------------
# Summary layout
# ---------------------------------------------------------------------------

class TestPartialBatchSchema:

    def test_summary_rows(self):
        rows = [
            ["Src", "Dst", "Date", "Total"],
            ["A", "B", "2024-01-01", "150.5"],
            ["A", "B", "2024-01-02", "80"],
        ]
        result = extract(rows, PARTIAL_BATCH_SCHEMA)
        assert result.header_skipped
        assert result.totals == {
            GroupKey("A", "B", D1): 150.5,
            GroupKey("A", "B", dt.date(2024, 1, 2)): 80.0,
        }

    def test_total_too_large_to_square_is_rejected(self):
        rows = [["A", "B", "2024-01-01", "1e200"], ["A", "B", "2024-01-01", "2"]]
        result = extract(rows, PARTIAL_BATCH_SCHEMA)
        assert result.rejected == 1
        assert "too large to square" in result.rejected_samples[0].reason
        assert result.totals == {GroupKey("A", "B", D1): 2.0}

    def test_running_total_too_large_to_square_is_rejected(self):
        rows = [["A", "B", "2024-01-01", "1e154"], ["A", "B", "2024-01-01", "1e154"]]
        result = extract(rows, PARTIAL_BATCH_SCHEMA)
        assert result.rejected == 1
        assert result.rejected_samples[0].line == 2
        assert result.totals == {GroupKey("A", "B", D1): 1e154}
