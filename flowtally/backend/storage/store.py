"""
storage/store.py

Abstract snapshot contract consumed by the consolidation cycle.

    load(tag)                 → LoadedSnapshot(state, version)
    save(state, version, tag) → new version, or VersionConflict

A missing tag loads as the empty state at version 0; that is not an error.
save() is an atomic compare-and-swap on the version: it replaces the
"latest" pointer and writes an immutable timestamped copy together, or
does nothing at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, NamedTuple

from ..aggregation.models import ConsolidatedState

LATEST_TAG = "latest"
EMPTY_VERSION = 0


class LoadedSnapshot(NamedTuple):
    state: ConsolidatedState
    version: int


@dataclass(slots=True)
class SnapshotInfo:
    """Metadata of one immutable snapshot copy."""

    tag: str
    version: int
    saved_at: float
    key_count: int
    batch_count: int


class SnapshotStore(ABC):
    """
    Contract every snapshot backend must satisfy.

    Implementations surface I/O failures as TransientStorageFailure so the
    caller can retry; they never return a partially written snapshot.
    """

    @abstractmethod
    def load(self, tag: str = LATEST_TAG) -> LoadedSnapshot:
        """
        Current state and version under `tag`.

        Raises:
            TransientStorageFailure: the read could not be completed.
            CorruptSnapshot: the stored document cannot be decoded.
        """
        ...

    @abstractmethod
    def save(
        self,
        state: ConsolidatedState,
        version: int,
        tag: str = LATEST_TAG,
        *,
        sources: Mapping[str, str] | None = None,
    ) -> int:
        """
        Persist `state` if the stored version still equals `version`.

        Args:
            sources: optional batch id → origin label for the ledger.

        Returns:
            The new version.

        Raises:
            VersionConflict: another writer saved since this caller's load.
            TransientStorageFailure: the write could not be completed.
        """
        ...

    @abstractmethod
    def history(self, tag: str = LATEST_TAG, limit: int = 50) -> list[SnapshotInfo]:
        """Immutable copies for `tag`, newest first."""
        ...

    @abstractmethod
    def load_version(self, tag: str, version: int) -> ConsolidatedState | None:
        """Read one immutable copy; None if it does not exist."""
        ...
