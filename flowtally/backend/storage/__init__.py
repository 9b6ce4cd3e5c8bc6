"""storage/__init__.py"""
from .database import Database
from .repository import SqliteSnapshotStore, open_store
from .store import LATEST_TAG, LoadedSnapshot, SnapshotInfo, SnapshotStore

__all__ = [
    "Database",
    "LATEST_TAG",
    "LoadedSnapshot",
    "SnapshotInfo",
    "SnapshotStore",
    "SqliteSnapshotStore",
    "open_store",
]
