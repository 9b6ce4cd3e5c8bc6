"""
api/routes/aggregates.py

GET /api/aggregates?source=&destination=          — export one pair
GET /api/aggregates/{source}/{destination}/{date} — exact-key lookup
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ...aggregation.models import GroupKey
from ...errors import CorruptSnapshot, TransientStorageFailure
from ...export.exporter import export_pair, lookup
from ...storage.repository import SqliteSnapshotStore
from ...storage.serializers import AggregateRecord
from ...storage.store import LATEST_TAG, LoadedSnapshot
from ..serializers import EmptyMarkerResponse, ExportResponse

router = APIRouter(prefix="/aggregates", tags=["aggregates"])


def _get_store() -> SqliteSnapshotStore:
    """FastAPI dependency — replaced in tests via set_store()."""
    from ..main import get_store
    return get_store()


def load_snapshot(store: SqliteSnapshotStore, tag: str) -> LoadedSnapshot:
    """store.load() with storage errors mapped to HTTP status codes."""
    try:
        return store.load(tag)
    except TransientStorageFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except CorruptSnapshot as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("", response_model=ExportResponse)
async def export_aggregates(
    source:      Annotated[str, Query(min_length=1)],
    destination: Annotated[str, Query(min_length=1)],
    tag:         Annotated[str, Query()] = LATEST_TAG,
    store:       SqliteSnapshotStore = Depends(_get_store),
) -> ExportResponse:
    """All dates for one (source, destination) pair, oldest first."""
    loaded = load_snapshot(store, tag)
    result = export_pair(loaded.state, source, destination)
    marker = None
    if result.marker is not None:
        marker = EmptyMarkerResponse(
            source=result.marker.source,
            destination=result.marker.destination,
            generated_at=result.marker.generated_at,
            message=result.marker.describe(),
        )
    return ExportResponse(
        tag=tag,
        version=loaded.version,
        source=result.source,
        destination=result.destination,
        count=len(result.entries),
        items=[AggregateRecord.from_entry(k, a) for k, a in result.entries],
        empty_marker=marker,
    )


@router.get("/{source}/{destination}/{date}", response_model=AggregateRecord)
async def get_aggregate(
    source: str,
    destination: str,
    date: dt.date,
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> AggregateRecord:
    key = GroupKey(source, destination, date)
    acc = lookup(load_snapshot(store, tag).state, key)
    if acc is None:
        raise HTTPException(status_code=404, detail=f"No aggregate for {key!r}")
    return AggregateRecord.from_entry(key, acc)
