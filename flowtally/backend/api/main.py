"""
api/main.py

Read-only HTTP API over the snapshot store.

Nothing here triggers ingestion or consolidation; the API only reads the
"latest" snapshot, the immutable history and the batch ledger.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import aggregates as aggregates_router
from .routes import snapshots as snapshots_router
from .routes import stats as stats_router

logger = logging.getLogger(__name__)

_store = None


def set_store(store) -> None:
    global _store
    _store = store


def get_store():
    if _store is None:
        raise RuntimeError("Snapshot store not initialised — call set_store() first")
    return _store


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="flowtally — traffic aggregate store",
        version="1.0.0",
        description="Running per-(source, destination, date) flow statistics",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(aggregates_router.router, prefix="/api")
    app.include_router(snapshots_router.router,  prefix="/api")
    app.include_router(stats_router.router,      prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
