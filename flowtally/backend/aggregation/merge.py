"""
aggregation/merge.py

MergeEngine — folds PartialBatches into a ConsolidatedState.

Contract:
  - Every entry of every applied batch contributes exactly one sample
    to its key's Accumulator (never zero, never more than one).
  - The result does not depend on batch order, nor on how batches are
    split across successive merge() calls.
  - A batch whose id already appears in the lineage (state.consumed_batches,
    or earlier in the same call) is a duplicate delivery and is not applied.
  - Pure: the input state is never mutated; a new state is returned.
  - A merge that would push any accumulator out of the float64 range
    raises NumericOverflow and returns nothing.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal

from ..errors import DuplicateBatchDetected, NumericOverflow
from ..metrics import METRICS
from .models import IDENTITY, Accumulator, ConsolidatedState, GroupKey, PartialBatch

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["skip", "raise"]


def batch_id_for(data: bytes) -> str:
    """
    Content-addressed identifier for one input unit.

    A redelivered unit has identical bytes and therefore the same id.
    """
    return hashlib.sha256(data).hexdigest()


@dataclass
class MergeResult:
    """Outcome of one MergeEngine.merge() call."""

    state: ConsolidatedState
    applied: list[str] = field(default_factory=list)
    """Batch ids folded in by this call, in application order."""

    duplicates: list[str] = field(default_factory=list)
    """Batch ids skipped because the lineage already consumed them."""

    keys_touched: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class MergeEngine:
    """
    Stateless merge of PartialBatches into consolidated state.

    Args:
        on_duplicate: "skip" logs and ignores a duplicate batch id,
                      "raise" raises DuplicateBatchDetected before anything
                      is applied.
    """

    def __init__(self, on_duplicate: DuplicatePolicy = "skip") -> None:
        if on_duplicate not in ("skip", "raise"):
            raise ValueError(f"unknown duplicate policy {on_duplicate!r}")
        self.on_duplicate = on_duplicate

    def merge(
        self,
        state: ConsolidatedState | None,
        batches: Iterable[PartialBatch],
    ) -> MergeResult:
        base = state if state is not None else ConsolidatedState.empty()
        consumed = set(base.consumed_batches)
        to_apply: list[PartialBatch] = []
        duplicates: list[str] = []

        for batch in batches:
            if batch.batch_id in consumed:
                if self.on_duplicate == "raise":
                    raise DuplicateBatchDetected(batch.batch_id)
                duplicates.append(batch.batch_id)
                logger.warning(
                    "Duplicate batch %s (source=%r) — already merged, skipping",
                    batch.batch_id[:12],
                    batch.source,
                )
                continue
            consumed.add(batch.batch_id)
            to_apply.append(batch)

        if not to_apply:
            METRICS.batches_duplicate.inc(len(duplicates))
            return MergeResult(state=base, duplicates=duplicates)

        entries: dict[GroupKey, Accumulator] = dict(base.items())
        touched: set[GroupKey] = set()
        for batch in to_apply:
            for key, value in batch.totals.items():
                try:
                    entries[key] = entries.get(key, IDENTITY).contribute(value)
                except NumericOverflow:
                    logger.error(
                        "Batch %s overflows %r — nothing from this merge is applied",
                        batch.batch_id[:12], key,
                    )
                    raise
                touched.add(key)

        METRICS.batches_merged.inc(len(to_apply))
        METRICS.batches_duplicate.inc(len(duplicates))
        logger.info(
            "Merged %d batch(es) into %d key(s) — %d duplicate(s) skipped, %d key(s) total",
            len(to_apply),
            len(touched),
            len(duplicates),
            len(entries),
        )
        return MergeResult(
            state=ConsolidatedState(entries, consumed),
            applied=[b.batch_id for b in to_apply],
            duplicates=duplicates,
            keys_touched=len(touched),
        )


def merge(
    state: ConsolidatedState | None,
    batches: Iterable[PartialBatch],
    on_duplicate: DuplicatePolicy = "skip",
) -> MergeResult:
    """Convenience wrapper around MergeEngine(on_duplicate).merge()."""
    return MergeEngine(on_duplicate).merge(state, batches)
