"""
api/routes/stats.py

GET /api/stats — latest snapshot summary + process counters
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ...metrics import METRICS
from ...storage.repository import SqliteSnapshotStore
from ...storage.store import LATEST_TAG
from ..serializers import StatsResponse
from .aggregates import load_snapshot

router = APIRouter(prefix="/stats", tags=["stats"])


def _get_store() -> SqliteSnapshotStore:
    from ..main import get_store
    return get_store()


@router.get("", response_model=StatsResponse)
async def get_stats(
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> StatsResponse:
    """Return the size of the snapshot under `tag` plus the counters of this process."""
    state, version = load_snapshot(store, tag)
    pairs = {(k.source, k.destination) for k in state}
    return StatsResponse(
        tag=tag,
        version=version,
        key_count=len(state),
        batch_count=len(state.consumed_batches),
        pair_count=len(pairs),
        metrics=METRICS.as_dict(),
    )
