"""
backend/errors.py

Error taxonomy for the consolidation pipeline.

    MalformedRecord         — one bad input row; recorded, never fatal
    NumericOverflow         — statistics would leave the float64 range
    MissingConfiguration    — no destination store; fatal for the cycle
    TransientStorageFailure — load/save I/O error; retried with backoff
    CorruptSnapshot         — stored document cannot be decoded; fatal
    VersionConflict         — another writer saved first; cycle is retried
    DuplicateBatchDetected  — batch id already merged; skipped
    RetryBudgetExhausted    — cycle gave up; prior "latest" is untouched
"""

from __future__ import annotations


class FlowtallyError(Exception):
    """Base class for every error raised by the backend."""


class MalformedRecord(FlowtallyError):
    def __init__(self, reason: str, row: list[str] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.row = list(row) if row is not None else []


class MissingConfiguration(FlowtallyError):
    pass


class TransientStorageFailure(FlowtallyError):
    pass


class CorruptSnapshot(FlowtallyError):
    def __init__(self, tag: str, version: int, reason: str) -> None:
        super().__init__(f"snapshot {tag!r} v{version} is unreadable: {reason}")
        self.tag = tag
        self.version = version


class NumericOverflow(FlowtallyError, ValueError):
    pass


class VersionConflict(FlowtallyError):
    def __init__(self, tag: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"snapshot {tag!r} moved: expected version {expected}, found {actual}"
        )
        self.tag = tag
        self.expected = expected
        self.actual = actual


class DuplicateBatchDetected(FlowtallyError):
    def __init__(self, batch_id: str) -> None:
        super().__init__(f"batch {batch_id!r} was already merged into this lineage")
        self.batch_id = batch_id


class RetryBudgetExhausted(FlowtallyError):
    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        super().__init__(f"consolidation failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
