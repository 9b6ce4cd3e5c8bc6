"""
ingest/parser.py

Byte decoding and typed field parsing for delimited input.

  - parse_csv_bytes() turns one input unit into a list of rows.
    UTF-8 with or without BOM; blank lines are dropped.
  - parse_field() converts one trimmed cell to its schema type and raises
    MalformedRecord on failure, so the extractor can record a reason
    instead of swallowing the error.

Accepted date forms:
  2024-01-01                ISO calendar date
  2024-01-01T10:15:00       ISO timestamp (any form datetime.fromisoformat takes)
  01/01/2024 10:15:00       day-first flow-meter timestamp (also with AM/PM)
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import math
import sys

from ..errors import MalformedRecord
from .schema import ColumnKind

# Largest magnitude whose square is still a finite float64.
MAX_MAGNITUDE = math.sqrt(sys.float_info.max)

_DAY_FIRST_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %I:%M:%S %p",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


def parse_csv_bytes(data: bytes, delimiter: str = ",") -> list[list[str]]:
    """Decode one unit of delimited bytes into rows of raw cells."""
    text = data.decode("utf-8-sig")
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    return [row for row in reader if any(cell.strip() for cell in row)]


def parse_date(text: str) -> dt.date:
    value = text.strip()
    if len(value) == 10 and value[4] == "-":
        return dt.date.fromisoformat(value)
    try:
        return dt.datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for fmt in _DAY_FIRST_FORMATS:
        try:
            return dt.datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognised date {text!r}")


def parse_field(text: str, kind: ColumnKind, name: str = "") -> str | dt.date | float | int:
    """
    Parse one cell as `kind`.

    Raises:
        MalformedRecord: empty value, unparseable value, or non-finite number.
    """
    value = text.strip()
    if not value:
        raise MalformedRecord(f"empty {name or kind} field")

    if kind == "string":
        return value
    try:
        if kind == "date":
            return parse_date(value)
        if kind == "integer":
            integer = int(value)
            if abs(integer) > MAX_MAGNITUDE:
                raise MalformedRecord(f"{name or kind}={value!r} is too large to square")
            return integer
        number = float(value)
    except ValueError:
        raise MalformedRecord(f"{name or kind}={value!r} is not a valid {kind}") from None
    if not math.isfinite(number):
        raise MalformedRecord(f"{name or kind}={value!r} is not finite")
    if abs(number) > MAX_MAGNITUDE:
        raise MalformedRecord(f"{name or kind}={value!r} is too large to square")
    return number


def format_date(date: dt.date) -> str:
    return date.isoformat()
