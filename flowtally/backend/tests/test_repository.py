"""
tests/test_repository.py

Tests for storage/repository.py — SqliteSnapshotStore against an
in-memory SQLite database.
"""

from __future__ import annotations

import datetime as dt
import json

import pytest

from flowtally.backend.aggregation.merge import merge
from flowtally.backend.aggregation.models import ConsolidatedState, GroupKey, PartialBatch
from flowtally.backend.errors import (
    CorruptSnapshot,
    MissingConfiguration,
    TransientStorageFailure,
    VersionConflict,
)
from flowtally.backend.metrics import METRICS
from flowtally.backend.storage.database import Database
from flowtally.backend.storage.repository import SqliteSnapshotStore, open_store
from flowtally.backend.storage.serializers import decode_snapshot_csv, decode_snapshot_json

D1 = dt.date(2024, 1, 1)
K1 = GroupKey("10.0.0.1", "10.0.0.2", D1)
K2 = GroupKey("10.0.0.3", "10.0.0.4", D1)


@pytest.fixture
def store():
    s = open_store(":memory:")
    yield s
    s.close()


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset_all()
    yield
    METRICS.reset_all()


def _state(*batches: PartialBatch, base: ConsolidatedState | None = None) -> ConsolidatedState:
    return merge(base, list(batches)).state


# ---------------------------------------------------------------------------
# load / save
# ---------------------------------------------------------------------------

class TestLoadSave:

    def test_missing_tag_loads_empty_at_version_zero(self, store):
        state, version = store.load("latest")
        assert len(state) == 0
        assert state.consumed_batches == frozenset()
        assert version == 0

    def test_save_then_load(self, store):
        state = _state(PartialBatch("b1", {K1: 150.5}))
        assert store.save(state, 0) == 1
        loaded, version = store.load()
        assert version == 1
        assert loaded == state

    def test_consumed_ids_travel_with_state(self, store):
        state = _state(PartialBatch("b1", {K1: 1.0}), PartialBatch("b2", {K2: 2.0}))
        store.save(state, 0)
        loaded, _ = store.load()
        assert loaded.consumed_batches == {"b1", "b2"}

    def test_successive_versions(self, store):
        s1 = _state(PartialBatch("b1", {K1: 150.5}))
        v1 = store.save(s1, 0)
        s2 = _state(PartialBatch("b2", {K1: 80.0}), base=s1)
        v2 = store.save(s2, v1)
        assert (v1, v2) == (1, 2)
        loaded, version = store.load()
        assert version == 2
        assert loaded[K1].count == 2

    def test_tags_are_independent(self, store):
        store.save(_state(PartialBatch("b1", {K1: 1.0})), 0, "alpha")
        state, version = store.load("beta")
        assert version == 0
        assert len(state) == 0
        assert store.tags() == ["alpha"]

    def test_save_updates_metrics(self, store):
        store.save(_state(PartialBatch("b1", {K1: 1.0})), 0)
        assert METRICS.snapshots_saved.value == 1


# ---------------------------------------------------------------------------
# Optimistic concurrency
# ---------------------------------------------------------------------------

class TestVersionConflict:

    def test_stale_version_rejected(self, store):
        s1 = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(s1, 0)
        store.save(_state(PartialBatch("b2", {K1: 2.0}), base=s1), 1)

        with pytest.raises(VersionConflict) as info:
            store.save(_state(PartialBatch("b3", {K1: 3.0}), base=s1), 1)
        assert info.value.expected == 1
        assert info.value.actual == 2
        assert METRICS.version_conflicts.value == 1

    def test_second_initial_save_rejected(self, store):
        store.save(_state(PartialBatch("b1", {K1: 1.0})), 0)
        with pytest.raises(VersionConflict):
            store.save(_state(PartialBatch("b2", {K1: 2.0})), 0)

    def test_losing_writer_changes_nothing(self, store):
        winner = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(winner, 0)
        with pytest.raises(VersionConflict):
            store.save(_state(PartialBatch("b2", {K2: 2.0})), 0)

        loaded, version = store.load()
        assert loaded == winner
        assert version == 1
        assert len(store.history()) == 1
        assert store.get_batch("b2") is None

    def test_version_ahead_of_store_rejected(self, store):
        with pytest.raises(VersionConflict):
            store.save(_state(PartialBatch("b1", {K1: 1.0})), 5)


# ---------------------------------------------------------------------------
# History and ledger
# ---------------------------------------------------------------------------

class TestHistory:

    def test_every_save_keeps_an_immutable_copy(self, store):
        s1 = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(s1, 0)
        s2 = _state(PartialBatch("b2", {K2: 2.0}), base=s1)
        store.save(s2, 1)

        infos = store.history()
        assert [i.version for i in infos] == [2, 1]
        assert infos[0].key_count == 2
        assert infos[0].batch_count == 2
        assert store.load_version("latest", 1) == s1
        assert store.load_version("latest", 2) == s2

    def test_missing_version(self, store):
        assert store.load_version("latest", 9) is None
        assert store.load_version_document("latest", 9) is None
        assert store.load_version_csv("latest", 9) is None

    def test_history_copy_has_both_formats(self, store):
        state = _state(PartialBatch("b1", {K1: 150.5}), PartialBatch("b2", {K1: 80.0}))
        store.save(state, 0)
        doc = decode_snapshot_json(store.load_version_document("latest", 1))
        assert doc.version == 1
        assert doc.consumed_batches == ["b1", "b2"]
        csv_state = decode_snapshot_csv(store.load_version_csv("latest", 1))
        assert csv_state[K1].count == 2
        assert csv_state[K1].sum == 230.5

    def test_ledger_records_source(self, store):
        state = _state(PartialBatch("b1", {K1: 1.0}, source="day1.csv"))
        store.save(state, 0, sources={"b1": "day1.csv"})
        row = store.get_batch("b1")
        assert row["version"] == 1
        assert row["source"] == "day1.csv"

    def test_ledger_keeps_first_version(self, store):
        s1 = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(s1, 0)
        store.save(_state(PartialBatch("b2", {K1: 2.0}), base=s1), 1)
        assert store.get_batch("b1")["version"] == 1
        assert store.get_batch("b2")["version"] == 2

    def test_batches_for_version(self, store):
        s1 = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(s1, 0, sources={"b1": "day1.csv"})
        store.save(_state(PartialBatch("b2", {K1: 2.0}), PartialBatch("b3", {K2: 1.0}), base=s1), 1)
        assert [r["batch_id"] for r in store.batches_for_version("latest", 1)] == ["b1"]
        assert [r["batch_id"] for r in store.batches_for_version("latest", 2)] == ["b2", "b3"]
        assert store.batches_for_version("latest", 1)[0]["source"] == "day1.csv"
        assert store.batches_for_version("latest", 9) == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:

    def test_empty_path_is_missing_configuration(self):
        with pytest.raises(MissingConfiguration):
            open_store("")

    def test_load_on_broken_connection_is_transient(self):
        db = Database(":memory:")
        db.init_schema()
        store = SqliteSnapshotStore(db)
        db.conn.close()
        with pytest.raises(TransientStorageFailure):
            store.load()
        assert METRICS.storage_failures.value == 1

    def test_failed_save_rolls_back(self, store):
        s1 = _state(PartialBatch("b1", {K1: 1.0}))
        store.save(s1, 0)
        # A clashing history row makes the second statement of the transaction fail.
        with store._db.transaction() as conn:
            conn.execute(
                "INSERT INTO snapshot_history (tag, version, saved_at, key_count, batch_count, document, csv) "
                "VALUES ('latest', 2, 0, 0, 0, '{}', '')"
            )

        with pytest.raises(TransientStorageFailure):
            store.save(_state(PartialBatch("b2", {K2: 2.0}), base=s1), 1)

        loaded, version = store.load()
        assert version == 1
        assert loaded == s1
        assert store.get_batch("b2") is None

    def test_undecodable_document_is_corrupt_snapshot(self, store):
        store.save(_state(PartialBatch("b1", {K1: 1.0})), 0)
        doc = json.loads(store.load_version_document("latest", 1))
        doc["aggregates"][0]["sumSquares"] = None
        with store._db.transaction() as conn:
            conn.execute("UPDATE snapshots SET document = ?", (json.dumps(doc),))
            conn.execute("UPDATE snapshot_history SET document = ?", (json.dumps(doc),))

        with pytest.raises(CorruptSnapshot) as info:
            store.load()
        assert info.value.version == 1
        with pytest.raises(CorruptSnapshot):
            store.load_version("latest", 1)


# ---------------------------------------------------------------------------
# Database wrapper
# ---------------------------------------------------------------------------

class TestDatabase:

    def test_transaction_rolls_back_on_error(self):
        db = Database(":memory:")
        db.init_schema()
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO consumed_batches (tag, batch_id, version, merged_at) "
                    "VALUES ('latest', 'b1', 1, 0)"
                )
                raise RuntimeError("abort")
        assert db.query_all("SELECT * FROM consumed_batches") == []
        db.close()

    def test_transaction_commits(self):
        db = Database(":memory:")
        db.init_schema()
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO consumed_batches (tag, batch_id, version, merged_at) "
                "VALUES ('latest', 'b1', 1, 0)"
            )
        assert db.query_one("SELECT source FROM consumed_batches")["source"] is None
        db.close()

    def test_close_is_idempotent(self):
        db = Database(":memory:")
        db.close()
        db.close()
        assert db.closed
