"""
aggregation/models.py

Data models for the two-level aggregation engine.

GroupKey          — hashable, totally ordered (source, destination, date)
Accumulator       — sufficient statistics (count, sum, sum of squares)
PartialBatch      — one input unit reduced to one value per GroupKey
ConsolidatedState — lifetime GroupKey → Accumulator map + consumed batch ids
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from ..errors import NumericOverflow


# ---------------------------------------------------------------------------
# GroupKey: hashable, ordered 3-tuple
# ---------------------------------------------------------------------------

class GroupKey(NamedTuple):
    """
    Aggregation bucket.

    Tuple semantics give structural equality, hashing and the required
    ascending order: source, then destination, then date.
    """

    source: str
    destination: str
    date: dt.date

    def __repr__(self) -> str:
        return f"{self.source}→{self.destination}@{self.date.isoformat()}"


def make_group_key(source: str, destination: str, date: dt.date | str) -> GroupKey:
    """
    Build a GroupKey from loosely-typed fields.

    Strings are trimmed; `date` may be a `datetime.date` or an ISO
    `YYYY-MM-DD` string. A `datetime` is truncated to its calendar date.
    """
    if isinstance(date, str):
        date = dt.date.fromisoformat(date.strip())
    elif isinstance(date, dt.datetime):
        date = date.date()
    return GroupKey(source.strip(), destination.strip(), date)


# ---------------------------------------------------------------------------
# Accumulator: commutative monoid over (count, sum, sum_squares)
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Accumulator:
    """
    Online sufficient statistics for one GroupKey.

    `count` counts contributing samples (PartialBatch entries), not raw rows.
    """

    count: int = 0
    sum: float = 0.0
    sum_squares: float = 0.0

    def __post_init__(self) -> None:
        if not (math.isfinite(self.sum) and math.isfinite(self.sum_squares)):
            raise NumericOverflow(
                f"accumulator left the float range (sum={self.sum!r}, "
                f"sum_squares={self.sum_squares!r})"
            )
        if self.count < 0:
            raise ValueError(f"count must be >= 0, got {self.count}")
        if self.sum_squares < 0:
            raise ValueError(f"sum_squares must be >= 0, got {self.sum_squares}")
        if self.count == 0 and (self.sum != 0 or self.sum_squares != 0):
            raise ValueError("an empty accumulator must have zero sum and sum_squares")

    @classmethod
    def of(cls, value: float) -> "Accumulator":
        """A single sample."""
        value = float(value)
        return cls(1, value, value * value)

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    def combine(self, other: "Accumulator") -> "Accumulator":
        return Accumulator(
            self.count + other.count,
            self.sum + other.sum,
            self.sum_squares + other.sum_squares,
        )

    __add__ = combine

    def contribute(self, value: float) -> "Accumulator":
        """Fold in exactly one sample."""
        return self.combine(Accumulator.of(value))

    # ------------------------------------------------------------------
    # Derived metrics
    # ------------------------------------------------------------------

    @property
    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return self.sum / self.count

    @property
    def variance(self) -> float:
        """Population variance, clamped at 0 against cancellation error."""
        if self.count == 0:
            return 0.0
        mean = self.mean
        return max(0.0, self.sum_squares / self.count - mean * mean)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)

    def is_close(self, other: "Accumulator", rel_tol: float = 1e-9) -> bool:
        """Field-wise comparison within floating tolerance."""
        return (
            self.count == other.count
            and math.isclose(self.sum, other.sum, rel_tol=rel_tol, abs_tol=1e-9)
            and math.isclose(self.sum_squares, other.sum_squares, rel_tol=rel_tol, abs_tol=1e-9)
        )

    def __repr__(self) -> str:
        return (
            f"Accumulator(n={self.count} sum={self.sum!r} "
            f"mean={self.mean:.4f} sd={self.stddev:.4f})"
        )


IDENTITY = Accumulator(0, 0.0, 0.0)


def combine(a: Accumulator, b: Accumulator) -> Accumulator:
    return a.combine(b)


def contribute(acc: Accumulator | None, value: float) -> Accumulator:
    """`contribute(acc, v) = combine(acc or IDENTITY, Accumulator(1, v, v²))`."""
    return (acc or IDENTITY).contribute(value)


# ---------------------------------------------------------------------------
# PartialBatch: per-unit totals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PartialBatch:
    """
    One input unit (e.g. one file) reduced to one value per GroupKey.

    `batch_id` is the stable identifier used by the merge engine to refuse a
    second merge of the same unit (at-least-once delivery).
    """

    batch_id: str
    totals: Mapping[GroupKey, float] = field(default_factory=dict)

    source: str = ""
    """Where the unit came from (file path, object key…). Informational."""

    rows_read: int = 0
    rejected: int = 0

    def __len__(self) -> int:
        return len(self.totals)

    def items(self) -> list[tuple[GroupKey, float]]:
        """Entries in GroupKey order."""
        return sorted(self.totals.items())

    def __repr__(self) -> str:
        return (
            f"PartialBatch(id={self.batch_id[:12]!r} keys={len(self.totals)} "
            f"rows={self.rows_read} rejected={self.rejected})"
        )


# ---------------------------------------------------------------------------
# ConsolidatedState: immutable aggregate-of-aggregates
# ---------------------------------------------------------------------------

class ConsolidatedState(Mapping):
    """
    Immutable mapping GroupKey → Accumulator.

    Also carries `consumed_batches`, the ids of every PartialBatch already
    folded into this lineage. Iteration is always in GroupKey order.
    """

    __slots__ = ("_entries", "consumed_batches")

    def __init__(
        self,
        entries: Mapping[GroupKey, Accumulator] | Iterable[tuple[GroupKey, Accumulator]] | None = None,
        consumed_batches: Iterable[str] = (),
    ) -> None:
        self._entries: dict[GroupKey, Accumulator] = dict(entries or {})
        self.consumed_batches: frozenset[str] = frozenset(consumed_batches)

    @classmethod
    def empty(cls) -> "ConsolidatedState":
        return cls()

    def __getitem__(self, key: GroupKey) -> Accumulator:
        return self._entries[key]

    def __iter__(self) -> Iterator[GroupKey]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ConsolidatedState):
            return (
                self._entries == other._entries
                and self.consumed_batches == other.consumed_batches
            )
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def sorted_items(self) -> list[tuple[GroupKey, Accumulator]]:
        return sorted(self._entries.items())

    def is_close(self, other: "ConsolidatedState", rel_tol: float = 1e-9) -> bool:
        """Same keys, same consumed ids, accumulators equal within tolerance."""
        if self._entries.keys() != other._entries.keys():
            return False
        if self.consumed_batches != other.consumed_batches:
            return False
        return all(
            acc.is_close(other._entries[key], rel_tol=rel_tol)
            for key, acc in self._entries.items()
        )

    def __repr__(self) -> str:
        return (
            f"ConsolidatedState(keys={len(self._entries)} "
            f"batches={len(self.consumed_batches)})"
        )
