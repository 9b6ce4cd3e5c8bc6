"""
backend/metrics.py

Process-wide pipeline counters, safe to bump from summarize worker threads.

Every counter is registered by name on the METRICS registry, so the API
and the CLI can report the whole set without knowing which exist.

Usage:
    from flowtally.backend.metrics import METRICS
    METRICS.rows_rejected.inc()
    METRICS.as_dict()   # {"units_summarized": 0, "rows_read": 0, ...}
"""

from __future__ import annotations

import threading


class Counter:
    """A named integer that only goes up (until reset)."""

    __slots__ = ("name", "description", "_value", "_lock")

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"counter {self.name!r} cannot decrease (amount={amount})")
        if amount:
            with self._lock:
                self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Counter {self.name}={self._value}>"


class Metrics:
    """Registry of the pipeline counters, in registration order."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}

        # summarize stage
        self.units_summarized = self._register(
            "units_summarized", "input units (files) reduced to a PartialBatch")
        self.rows_read = self._register(
            "rows_read", "data rows seen by the extractor, header rows excluded")
        self.rows_rejected = self._register(
            "rows_rejected", "rows skipped as malformed")

        # merge stage
        self.batches_merged = self._register(
            "batches_merged", "PartialBatches folded into consolidated state")
        self.batches_duplicate = self._register(
            "batches_duplicate", "PartialBatches skipped because their id was already consumed")

        # storage
        self.snapshots_saved = self._register("snapshots_saved", "successful compare-and-swap saves")
        self.version_conflicts = self._register("version_conflicts", "saves that lost the race")
        self.storage_failures = self._register("storage_failures", "load/save I/O errors")

    def _register(self, name: str, description: str) -> Counter:
        if name in self._counters:
            raise ValueError(f"counter {name!r} is already registered")
        counter = self._counters[name] = Counter(name, description)
        return counter

    def __iter__(self):
        return iter(self._counters.values())

    def as_dict(self) -> dict[str, int]:
        """Counter name → current value (JSON-safe)."""
        return {c.name: c.value for c in self}

    def reset_all(self) -> None:
        for counter in self:
            counter.reset()


METRICS = Metrics()
