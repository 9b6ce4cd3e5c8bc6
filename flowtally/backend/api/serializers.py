"""
api/serializers.py

Response models for the read-only HTTP API.
Aggregate rows reuse storage.serializers.AggregateRecord so the API and the
snapshot document share one wire shape.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel

from ..storage.serializers import AggregateRecord


class EmptyMarkerResponse(BaseModel):
    source: str
    destination: str
    generated_at: dt.datetime
    message: str


class ExportResponse(BaseModel):
    tag: str
    version: int
    source: str
    destination: str
    count: int
    items: list[AggregateRecord]
    empty_marker: EmptyMarkerResponse | None = None


class SnapshotInfoResponse(BaseModel):
    tag: str
    version: int
    saved_at: float
    key_count: int
    batch_count: int

    model_config = {"from_attributes": True}


class BatchResponse(BaseModel):
    tag: str
    batch_id: str
    version: int
    merged_at: float
    source: str | None = None


class StatsResponse(BaseModel):
    tag: str
    version: int
    key_count: int
    batch_count: int
    pair_count: int
    """Distinct (source, destination) pairs in the latest snapshot."""

    metrics: dict[str, int]
    """Counters of the serving process (see metrics.py)."""
