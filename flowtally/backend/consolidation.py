"""
backend/consolidation.py

ConsolidationCycle — one read-modify-write transaction against the shared
ConsolidatedState:

    load(tag) → (state, version)
    merge(state, batches)            pure, in memory
    save(new_state, version, tag)    optimistic compare-and-swap

Retry policy (bounded by max_attempts, counted across both kinds):
  - VersionConflict          → reload and redo the whole cycle immediately
  - TransientStorageFailure  → exponential backoff, then redo the cycle
Exhausting the budget raises RetryBudgetExhausted; the previous "latest"
snapshot is untouched in that case. A cycle whose batches are all
duplicates does not write anything.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .aggregation.merge import MergeEngine
from .aggregation.models import ConsolidatedState, PartialBatch
from .errors import MissingConfiguration, RetryBudgetExhausted, TransientStorageFailure, VersionConflict
from .storage.store import LATEST_TAG, SnapshotStore

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS_DEFAULT = 5
_BACKOFF_DEFAULT = 0.2
_BACKOFF_MAX_DEFAULT = 5.0


@dataclass
class CycleResult:
    """Outcome of one successful consolidation cycle."""

    tag: str
    version: int
    """Version now visible under `tag` (unchanged if nothing was applied)."""

    state: ConsolidatedState
    applied: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    attempts: int = 1
    saved: bool = False


class ConsolidationCycle:
    """
    Runs load → merge → save against a SnapshotStore with a retry budget.

    Args:
        store:          snapshot backend; None means no store is configured.
        engine:         merge engine (defaults to skip-on-duplicate).
        max_attempts:   total cycle attempts before giving up.
        backoff:        base delay (s) after a transient storage failure.
        backoff_max:    cap on the exponential delay.
        sleep:          injectable sleep, for tests.
    """

    def __init__(
        self,
        store: SnapshotStore | None,
        engine: MergeEngine | None = None,
        max_attempts: int = _MAX_ATTEMPTS_DEFAULT,
        backoff: float = _BACKOFF_DEFAULT,
        backoff_max: float = _BACKOFF_MAX_DEFAULT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if store is None:
            raise MissingConfiguration("no snapshot store configured for consolidation")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self._engine = engine or MergeEngine()
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._backoff_max = backoff_max
        self._sleep = sleep

        self.stats: dict[str, int] = {
            "cycles_completed": 0,
            "cycles_failed": 0,
            "conflict_retries": 0,
            "storage_retries": 0,
        }

    def run(self, batches: Sequence[PartialBatch], tag: str = LATEST_TAG) -> CycleResult:
        sources = {b.batch_id: b.source for b in batches if b.source}
        last_error: Exception | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                result = self._attempt(batches, tag, sources)
            except VersionConflict as exc:
                last_error = exc
                self.stats["conflict_retries"] += 1
                logger.info(
                    "Cycle attempt %d/%d for %r: %s — reloading",
                    attempt, self._max_attempts, tag, exc,
                )
                continue
            except TransientStorageFailure as exc:
                last_error = exc
                self.stats["storage_retries"] += 1
                delay = min(self._backoff * (2 ** (attempt - 1)), self._backoff_max)
                logger.warning(
                    "Cycle attempt %d/%d for %r: storage failure (%s) — retrying in %.2fs",
                    attempt, self._max_attempts, tag, exc, delay,
                )
                if attempt < self._max_attempts:
                    self._sleep(delay)
                continue

            result.attempts = attempt
            self.stats["cycles_completed"] += 1
            return result

        self.stats["cycles_failed"] += 1
        logger.error(
            "Consolidation of %d batch(es) into %r gave up after %d attempt(s): %s",
            len(batches), tag, self._max_attempts, last_error,
        )
        raise RetryBudgetExhausted(self._max_attempts, last_error)

    def _attempt(
        self,
        batches: Sequence[PartialBatch],
        tag: str,
        sources: dict[str, str],
    ) -> CycleResult:
        loaded = self._store.load(tag)
        merged = self._engine.merge(loaded.state, batches)

        if not merged.changed:
            logger.info(
                "Nothing new for %r (v%d): %d duplicate batch(es)",
                tag, loaded.version, len(merged.duplicates),
            )
            return CycleResult(
                tag=tag,
                version=loaded.version,
                state=loaded.state,
                duplicates=merged.duplicates,
            )

        new_version = self._store.save(merged.state, loaded.version, tag, sources=sources)
        return CycleResult(
            tag=tag,
            version=new_version,
            state=merged.state,
            applied=merged.applied,
            duplicates=merged.duplicates,
            saved=True,
        )


def cycle_from_settings(store: SnapshotStore | None, cfg=None) -> ConsolidationCycle:
    """Build a ConsolidationCycle with the retry budget from settings."""
    if cfg is None:
        from .config import settings as cfg
    return ConsolidationCycle(
        store,
        max_attempts=cfg.MERGE_MAX_ATTEMPTS,
        backoff=cfg.RETRY_BACKOFF_SECONDS,
        backoff_max=cfg.RETRY_BACKOFF_MAX_SECONDS,
    )
