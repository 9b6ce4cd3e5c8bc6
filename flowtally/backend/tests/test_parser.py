"""
tests/test_parser.py

Tests for ingest/parser.py — byte decoding and typed field parsing.
"""

from __future__ import annotations

import datetime as dt

import pytest

from flowtally.backend.errors import MalformedRecord
from flowtally.backend.ingest.parser import parse_csv_bytes, parse_date, parse_field


class TestParseCsvBytes:

    def test_basic_rows(self):
        rows = parse_csv_bytes(b"a,b,c\n1,2,3\n")
        assert rows == [["a", "b", "c"], ["1", "2", "3"]]

    def test_strips_utf8_bom(self):
        rows = parse_csv_bytes(b"\xef\xbb\xbfSrc,Dst\n")
        assert rows == [["Src", "Dst"]]

    def test_blank_lines_dropped(self):
        rows = parse_csv_bytes(b"a,b\n\n , \nc,d\n")
        assert rows == [["a", "b"], ["c", "d"]]

    def test_crlf_line_endings(self):
        assert parse_csv_bytes(b"a,b\r\nc,d\r\n") == [["a", "b"], ["c", "d"]]

    def test_quoted_field_with_delimiter(self):
        assert parse_csv_bytes(b'"x,y",z\n') == [["x,y", "z"]]

    def test_custom_delimiter(self):
        assert parse_csv_bytes(b"a;b\n", delimiter=";") == [["a", "b"]]


class TestParseDate:

    @pytest.mark.parametrize("text", [
        "2024-01-05",
        "2024-01-05T10:15:00",
        "2024-01-05 10:15:00",
        "05/01/2024 10:15:00",
        "05/01/2024 10:15:00 PM",
        "05/01/2024 10:15",
        "05/01/2024",
    ])
    def test_accepted_forms(self, text):
        assert parse_date(text) == dt.date(2024, 1, 5)

    def test_unrecognised(self):
        with pytest.raises(ValueError):
            parse_date("Jan 5th")


class TestParseField:

    def test_string_is_trimmed(self):
        assert parse_field("  10.0.0.1 ", "string") == "10.0.0.1"

    def test_float(self):
        assert parse_field("150.5", "float") == 150.5

    def test_integer(self):
        assert parse_field(" 42 ", "integer") == 42

    def test_integer_rejects_decimal(self):
        with pytest.raises(MalformedRecord, match="not a valid integer"):
            parse_field("4.2", "integer", "pkts")

    @pytest.mark.parametrize("kind", ["string", "date", "float", "integer"])
    def test_empty_rejected(self, kind):
        with pytest.raises(MalformedRecord, match="empty"):
            parse_field("   ", kind)

    @pytest.mark.parametrize("text", ["nan", "inf", "-inf"])
    def test_non_finite_rejected(self, text):
        with pytest.raises(MalformedRecord, match="not finite"):
            parse_field(text, "float", "duration")

    @pytest.mark.parametrize("text", ["1e200", "-1e155"])
    def test_float_too_large_to_square_rejected(self, text):
        with pytest.raises(MalformedRecord, match="too large to square"):
            parse_field(text, "float", "duration")

    def test_integer_too_large_to_square_rejected(self):
        with pytest.raises(MalformedRecord, match="too large to square"):
            parse_field("9" * 160, "integer", "pkts")

    def test_largest_squarable_float_accepted(self):
        assert parse_field("1e150", "float") == 1e150

    def test_bad_date_reason_names_column(self):
        with pytest.raises(MalformedRecord) as info:
            parse_field("soon", "date", "timestamp")
        assert "timestamp" in info.value.reason
