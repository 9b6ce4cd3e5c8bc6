"""
storage/repository.py

SqliteSnapshotStore — SnapshotStore backed by the storage Database.

save() runs as one SQLite transaction:
  1. compare-and-swap the "latest" row (INSERT for version 0,
     UPDATE … WHERE version = ? otherwise); no row affected → VersionConflict
  2. insert the immutable history copy (JSON document + CSV)
  3. record every consumed batch id in the ledger
Any failure rolls the whole transaction back, so the previous "latest"
stays visible and nothing partial is ever published.

The JSON document of the "latest" row is authoritative for load(): it holds
both the aggregates and the consumed batch ids, read in a single statement.
"""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import time
from typing import Mapping

from ..aggregation.models import ConsolidatedState
from ..errors import CorruptSnapshot, TransientStorageFailure, VersionConflict
from ..metrics import METRICS
from .database import Database
from .migrations import apply_migrations
from .serializers import (
    decode_snapshot_json,
    document_to_state,
    encode_snapshot_csv,
    encode_snapshot_json,
    state_to_document,
)
from .store import EMPTY_VERSION, LATEST_TAG, LoadedSnapshot, SnapshotInfo, SnapshotStore

logger = logging.getLogger(__name__)


def _decode_document(raw: str, tag: str, version: int) -> ConsolidatedState:
    """Stored JSON document → state; undecodable documents raise CorruptSnapshot."""
    try:
        return document_to_state(decode_snapshot_json(raw))
    except ValueError as exc:
        logger.error("Snapshot %r v%d failed to decode: %s", tag, version, exc)
        raise CorruptSnapshot(tag, version, str(exc)) from exc


class SqliteSnapshotStore(SnapshotStore):
    def __init__(self, db: Database) -> None:
        self._db = db

    # ==================================================================
    # Snapshot contract
    # ==================================================================

    def load(self, tag: str = LATEST_TAG) -> LoadedSnapshot:
        try:
            row = self._db.query_one(
                "SELECT version, document FROM snapshots WHERE tag = ?", (tag,)
            )
        except sqlite3.Error as exc:
            METRICS.storage_failures.inc()
            raise TransientStorageFailure(f"load of {tag!r} failed: {exc}") from exc

        if row is None:
            logger.info("No snapshot under tag %r — starting from empty state", tag)
            return LoadedSnapshot(ConsolidatedState.empty(), EMPTY_VERSION)

        state = _decode_document(row["document"], tag, row["version"])
        logger.debug("Loaded %r v%d — %r", tag, row["version"], state)
        return LoadedSnapshot(state, row["version"])

    def save(
        self,
        state: ConsolidatedState,
        version: int,
        tag: str = LATEST_TAG,
        *,
        sources: Mapping[str, str] | None = None,
    ) -> int:
        new_version = version + 1
        now = time.time()
        document = encode_snapshot_json(
            state_to_document(
                state, tag, new_version, dt.datetime.fromtimestamp(now, dt.timezone.utc)
            )
        )
        csv_text = encode_snapshot_csv(state)
        sources = sources or {}

        try:
            with self._db.transaction() as conn:
                if version == EMPTY_VERSION:
                    cur = conn.execute(
                        """
                        INSERT OR IGNORE INTO snapshots
                            (tag, version, saved_at, key_count, document)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (tag, new_version, now, len(state), document),
                    )
                else:
                    cur = conn.execute(
                        """
                        UPDATE snapshots
                        SET version = ?, saved_at = ?, key_count = ?, document = ?
                        WHERE tag = ? AND version = ?
                        """,
                        (new_version, now, len(state), document, tag, version),
                    )
                if cur.rowcount != 1:
                    raise VersionConflict(tag, version, None)

                conn.execute(
                    """
                    INSERT INTO snapshot_history
                        (tag, version, saved_at, key_count, batch_count, document, csv)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tag,
                        new_version,
                        now,
                        len(state),
                        len(state.consumed_batches),
                        document,
                        csv_text,
                    ),
                )
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO consumed_batches
                        (tag, batch_id, version, merged_at, source)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (tag, batch_id, new_version, now, sources.get(batch_id))
                        for batch_id in sorted(state.consumed_batches)
                    ],
                )
        except VersionConflict as exc:
            exc.actual = self.current_version(tag)
            METRICS.version_conflicts.inc()
            logger.info("Save of %r lost the race: %s", tag, exc)
            raise
        except sqlite3.Error as exc:
            METRICS.storage_failures.inc()
            logger.error("Save of %r v%d failed: %s", tag, new_version, exc)
            raise TransientStorageFailure(f"save of {tag!r} failed: {exc}") from exc

        METRICS.snapshots_saved.inc()
        logger.info(
            "Saved %r v%d — %d key(s), %d batch(es) consumed",
            tag, new_version, len(state), len(state.consumed_batches),
        )
        return new_version

    def history(self, tag: str = LATEST_TAG, limit: int = 50) -> list[SnapshotInfo]:
        rows = self._db.query_all(
            """
            SELECT tag, version, saved_at, key_count, batch_count
            FROM snapshot_history
            WHERE tag = ?
            ORDER BY version DESC
            LIMIT ?
            """,
            (tag, min(limit, 1000)),
        )
        return [SnapshotInfo(**dict(r)) for r in rows]

    def load_version(self, tag: str, version: int) -> ConsolidatedState | None:
        row = self._db.query_one(
            "SELECT document FROM snapshot_history WHERE tag = ? AND version = ?",
            (tag, version),
        )
        if row is None:
            return None
        return _decode_document(row["document"], tag, version)

    # ==================================================================
    # Read helpers (audit / API)
    # ==================================================================

    def current_version(self, tag: str = LATEST_TAG) -> int | None:
        row = self._db.query_one(
            "SELECT version FROM snapshots WHERE tag = ?", (tag,)
        )
        return row[0] if row else None

    def has_version(self, tag: str, version: int) -> bool:
        row = self._db.query_one(
            "SELECT 1 FROM snapshot_history WHERE tag = ? AND version = ?", (tag, version)
        )
        return row is not None

    def load_version_document(self, tag: str, version: int) -> str | None:
        row = self._db.query_one(
            "SELECT document FROM snapshot_history WHERE tag = ? AND version = ?",
            (tag, version),
        )
        return row["document"] if row else None

    def load_version_csv(self, tag: str, version: int) -> str | None:
        row = self._db.query_one(
            "SELECT csv FROM snapshot_history WHERE tag = ? AND version = ?",
            (tag, version),
        )
        return row["csv"] if row else None

    def get_batch(self, batch_id: str, tag: str = LATEST_TAG) -> dict | None:
        """Ledger entry for one consumed batch id, or None if never merged."""
        row = self._db.query_one(
            """
            SELECT tag, batch_id, version, merged_at, source
            FROM consumed_batches
            WHERE tag = ? AND batch_id = ?
            """,
            (tag, batch_id),
        )
        return dict(row) if row else None

    def batches_for_version(self, tag: str, version: int) -> list[dict]:
        """Ledger entries first consumed by the save that produced `version`."""
        rows = self._db.query_all(
            """
            SELECT tag, batch_id, version, merged_at, source
            FROM consumed_batches
            WHERE tag = ? AND version = ?
            ORDER BY batch_id
            """,
            (tag, version),
        )
        return [dict(r) for r in rows]

    def tags(self) -> list[str]:
        rows = self._db.query_all("SELECT tag FROM snapshots ORDER BY tag")
        return [r[0] for r in rows]

    def close(self) -> None:
        self._db.close()


def open_store(db_path: str) -> SqliteSnapshotStore:
    """Open (and migrate) the database at `db_path` and wrap it in a store."""
    db = Database(db_path)
    db.init_schema()
    apply_migrations(db)
    return SqliteSnapshotStore(db)
