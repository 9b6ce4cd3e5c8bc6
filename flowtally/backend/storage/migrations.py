"""
storage/migrations.py

Schema upgrades applied on top of Database.init_schema() (version 1).

    v2  index the consumed-batch ledger by (tag, version) so the batches a
        given snapshot version introduced can be listed without a scan
        (SqliteSnapshotStore.batches_for_version, /api/snapshots/{v}/batches)

Each migration runs in its own transaction together with its schema_version
row; a failing migration leaves the database at the previous version.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable

from .database import Database

logger = logging.getLogger(__name__)


def migration_2(conn: sqlite3.Connection) -> None:
    """Index the ledger by the version that consumed each batch."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_ledger_version ON consumed_batches(tag, version)"
    )


_MIGRATIONS: list[tuple[int, Callable[[sqlite3.Connection], None]]] = [
    (2, migration_2),
]

LATEST_SCHEMA_VERSION = max(v for v, _ in _MIGRATIONS)


def current_version(db: Database) -> int:
    row = db.query_one("SELECT MAX(version) FROM schema_version")
    return row[0] if row[0] is not None else 0


def apply_migrations(db: Database) -> None:
    version_now = current_version(db)
    pending = [(v, fn) for v, fn in _MIGRATIONS if v > version_now]
    if not pending:
        logger.debug("Schema is current (version=%d)", version_now)
        return

    for version, migration_fn in pending:
        logger.info("Migrating schema to v%d", version)
        try:
            with db.transaction() as conn:
                migration_fn(conn)
                conn.execute(
                    "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, time.time()),
                )
        except Exception as exc:
            logger.error("Migration v%d failed and was rolled back: %s", version, exc)
            raise
        logger.info("Schema now at v%d", version)
