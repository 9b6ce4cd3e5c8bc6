"""
api/routes/snapshots.py

GET /api/snapshots                — immutable snapshot history (newest first)
GET /api/snapshots/{version}      — one immutable snapshot document
GET /api/snapshots/{version}/csv  — the same snapshot as CSV
GET /api/snapshots/{version}/batches — batches that version consumed first
GET /api/batches/{batch_id}       — ledger entry for a consumed batch
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from ...storage.repository import SqliteSnapshotStore
from ...storage.serializers import SnapshotDocument, decode_snapshot_json
from ...storage.store import LATEST_TAG
from ..serializers import BatchResponse, SnapshotInfoResponse

router = APIRouter(tags=["snapshots"])


def _get_store() -> SqliteSnapshotStore:
    from ..main import get_store
    return get_store()


@router.get("/snapshots", response_model=list[SnapshotInfoResponse])
async def list_snapshots(
    tag:   Annotated[str, Query()] = LATEST_TAG,
    limit: Annotated[int, Query(ge=1, le=1000)] = 50,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> list[SnapshotInfoResponse]:
    return [SnapshotInfoResponse.model_validate(i) for i in store.history(tag, limit)]


@router.get("/snapshots/{version}", response_model=SnapshotDocument)
async def get_snapshot(
    version: int,
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> SnapshotDocument:
    raw = store.load_version_document(tag, version)
    if raw is None:
        raise HTTPException(status_code=404, detail=f"Snapshot {tag!r} v{version} not found")
    try:
        return decode_snapshot_json(raw)
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=f"Snapshot {tag!r} v{version} is unreadable") from exc


@router.get("/snapshots/{version}/csv", response_class=PlainTextResponse)
async def get_snapshot_csv(
    version: int,
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> PlainTextResponse:
    text = store.load_version_csv(tag, version)
    if text is None:
        raise HTTPException(status_code=404, detail=f"Snapshot {tag!r} v{version} not found")
    return PlainTextResponse(text, media_type="text/csv")


@router.get("/snapshots/{version}/batches", response_model=list[BatchResponse])
async def get_snapshot_batches(
    version: int,
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> list[BatchResponse]:
    if not store.has_version(tag, version):
        raise HTTPException(status_code=404, detail=f"Snapshot {tag!r} v{version} not found")
    return [BatchResponse(**r) for r in store.batches_for_version(tag, version)]


@router.get("/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(
    batch_id: str,
    tag: Annotated[str, Query()] = LATEST_TAG,
    store: SqliteSnapshotStore = Depends(_get_store),
) -> BatchResponse:
    row = store.get_batch(batch_id, tag)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id!r} was never merged")
    return BatchResponse(**row)
