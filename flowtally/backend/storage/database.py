"""
storage/database.py

SQLite connection and schema initialisation for the snapshot store.

Design decisions:
  - WAL journal mode so readers (API, export) never block the writer.
  - check_same_thread=False: the API serves requests from a thread pool;
    every write goes through SqliteSnapshotStore.save(), one transaction each.
  - busy_timeout=5000ms: a second writer waits for the lock instead of
    failing immediately with SQLITE_BUSY.
  - Tables:
        snapshots         — one mutable "latest" row per tag (version CAS)
        snapshot_history  — immutable timestamped copies, never updated
        consumed_batches  — idempotency ledger, one row per merged batch id,
                            with the version that consumed it and its origin
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from ..errors import MissingConfiguration

logger = logging.getLogger(__name__)

_CURRENT_SCHEMA_VERSION = 1


class Database:
    """
    Thin wrapper around a sqlite3 connection.

    Usage:
        db = Database("data/flowtally.db")
        db.init_schema()
        with db.transaction() as conn:
            conn.execute(...)
        db.close()
    """

    def __init__(self, db_path: str = "data/flowtally.db") -> None:
        if not db_path:
            raise MissingConfiguration("no snapshot store configured (DB_PATH is empty)")
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row  # rows behave like dicts
        self._write_lock = threading.RLock()
        self._closed = False
        self._configure()
        logger.info("Database opened — path=%r", db_path)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _configure(self) -> None:
        """Apply performance and safety PRAGMAs."""
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA busy_timeout=5000")
        cur.execute("PRAGMA synchronous=NORMAL")  # safe with WAL
        self.conn.commit()

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create all tables and indexes if they don't already exist."""
        cur = self.conn.cursor()

        cur.executescript("""
            CREATE TABLE IF NOT EXISTS snapshots (
                tag         TEXT PRIMARY KEY,
                version     INTEGER NOT NULL,
                saved_at    REAL NOT NULL,
                key_count   INTEGER NOT NULL,
                document    TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS snapshot_history (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                tag         TEXT NOT NULL,
                version     INTEGER NOT NULL,
                saved_at    REAL NOT NULL,
                key_count   INTEGER NOT NULL,
                batch_count INTEGER NOT NULL,
                document    TEXT NOT NULL,
                csv         TEXT NOT NULL,
                UNIQUE (tag, version)
            );

            CREATE TABLE IF NOT EXISTS consumed_batches (
                tag         TEXT NOT NULL,
                batch_id    TEXT NOT NULL,
                version     INTEGER NOT NULL,
                merged_at   REAL NOT NULL,
                source      TEXT DEFAULT NULL,
                PRIMARY KEY (tag, batch_id)
            );

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_history_tag_saved
                ON snapshot_history(tag, saved_at DESC);
        """)

        # Record schema version (ignore if already present)
        cur.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (_CURRENT_SCHEMA_VERSION, time.time()),
        )
        self.conn.commit()
        logger.info("Schema initialised (version=%d)", _CURRENT_SCHEMA_VERSION)

    # ------------------------------------------------------------------
    # Transactions and queries
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One write transaction on the shared connection.

        BEGIN IMMEDIATE takes the write lock up front, so a competing writer
        waits on busy_timeout here rather than failing halfway through.
        Commits on normal exit; rolls back and re-raises on any exception.
        """
        with self._write_lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            self.conn.commit()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one read statement outside any explicit transaction."""
        return self.conn.execute(sql, params)

    def query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.conn.execute(sql, params).fetchone()

    def query_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the connection; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        try:
            self.conn.close()
        except sqlite3.Error as exc:
            logger.warning("Closing %r failed: %s", self.db_path, exc)
            return
        logger.info("Database closed — path=%r", self.db_path)
