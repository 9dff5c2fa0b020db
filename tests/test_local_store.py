"""Tests for LocalStore collections and sync metadata."""

import pytest

from hearth.errors import (
    DuplicateKeyError,
    InvalidRecordError,
    NotFoundError,
    UnknownCollectionError,
)
from hearth.store import COLLECTIONS, LocalStore


@pytest.fixture
def store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


def make_task(**overrides):
    task = {
        "family_id": "fam-1",
        "title": "Feed the cat",
        "assigned_to": "member-1",
        "created_by": "member-2",
        "status": "pending",
        "due_date": "2026-03-01",
        "points": 10,
    }
    task.update(overrides)
    return task


class TestLocalStoreSchema:
    """Tests for database schema initialization."""

    def test_tables_created(self, store):
        """Every collection gets its own table."""
        cursor = store.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )
        tables = {row[0] for row in cursor}

        for name in COLLECTIONS:
            assert name in tables
        assert "client_state" in tables

    def test_indexes_created(self, store):
        """Declared indexes and the change_id index exist."""
        cursor = store.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name='tasks'"
        )
        indexes = {row[0] for row in cursor}

        assert "idx_tasks_change_id" in indexes
        assert "idx_tasks_family_id" in indexes
        assert "idx_tasks_status" in indexes

    def test_connect_is_idempotent(self, store):
        conn = store.connection
        store.connect()
        assert store.connection is conn

    def test_unknown_collection(self, store):
        with pytest.raises(UnknownCollectionError):
            store.get("chores", "x")
        with pytest.raises(UnknownCollectionError):
            store.insert("chores", {"title": "nope"})


class TestLocalStoreWrites:
    """Tests for insert, update and delete."""

    def test_insert_attaches_metadata(self, store):
        stored = store.insert("tasks", make_task())

        assert stored["id"]
        assert stored["sync_version"] == 1
        assert stored["is_deleted"] is False
        assert stored["change_id"]
        assert stored["last_modified"] > 0
        assert stored["created_at"] == stored["last_modified"]

        assert store.get("tasks", stored["id"]) == stored

    def test_insert_keeps_given_id(self, store):
        stored = store.insert("tasks", make_task(id="task-1"))
        assert stored["id"] == "task-1"

    def test_insert_duplicate_key(self, store):
        store.insert("tasks", make_task(id="task-1"))

        with pytest.raises(DuplicateKeyError) as exc_info:
            store.insert("tasks", make_task(id="task-1", title="Other"))

        assert exc_info.value.record_id == "task-1"
        assert store.get("tasks", "task-1")["title"] == "Feed the cat"

    def test_update_bumps_version(self, store):
        """Each local write bumps sync_version and draws a fresh change_id."""
        first = store.insert("tasks", make_task())
        second = store.update("tasks", {**first, "status": "done"})

        assert second["sync_version"] == first["sync_version"] + 1
        assert second["change_id"] != first["change_id"]
        assert second["created_at"] == first["created_at"]
        assert store.get("tasks", first["id"])["status"] == "done"

    def test_update_same_input_twice(self, store):
        """Repeating an update without metadata still bumps the version by one."""
        first = store.update("tasks", {"id": "t1", "title": "x"})
        second = store.update("tasks", {"id": "t1", "title": "x"})

        assert second["sync_version"] - first["sync_version"] == 1
        assert second["change_id"] != first["change_id"]

    def test_update_never_lowers_stored_version(self, store):
        stored = store.insert("tasks", make_task(id="t1"))
        stored = store.update("tasks", stored)
        stored = store.update("tasks", stored)
        assert stored["sync_version"] == 3

        edited = store.update("tasks", {"id": "t1", "title": "User edit"})

        assert edited["sync_version"] == 4
        assert edited["created_at"] == stored["created_at"]
        assert store.get("tasks", "t1")["title"] == "User edit"

    def test_update_after_soft_delete_continues_version(self, store):
        stored = store.insert("tasks", make_task(id="t1"))
        store.soft_delete("tasks", "t1")

        revived = store.update("tasks", {"id": "t1", "title": "Back again"})

        assert revived["sync_version"] == 3
        assert revived["created_at"] == stored["created_at"]

    def test_update_is_upsert(self, store):
        stored = store.update("rewards", {"id": "r-1", "family_id": "fam-1", "points_cost": 50})

        assert stored["sync_version"] == 1
        assert store.get("rewards", "r-1")["points_cost"] == 50

    def test_update_without_stamp_stores_verbatim(self, store):
        record = {
            "id": "task-9",
            "title": "From server",
            "family_id": "fam-1",
            "last_modified": 1234,
            "change_id": "server-change",
            "sync_version": 7,
            "is_deleted": False,
        }

        stored = store.update("tasks", record, stamp=False)

        assert stored == record
        assert store.get("tasks", "task-9") == record

    def test_update_without_stamp_requires_metadata(self, store):
        with pytest.raises(InvalidRecordError) as exc_info:
            store.update("tasks", {"id": "task-9", "title": "Bare"}, stamp=False)

        assert "change_id" in exc_info.value.missing
        assert store.get("tasks", "task-9") is None

    def test_soft_delete_hides_record(self, store):
        stored = store.insert("tasks", make_task())

        deleted = store.soft_delete("tasks", stored["id"])

        assert deleted["is_deleted"] is True
        assert deleted["sync_version"] == 2
        assert store.get("tasks", stored["id"]) is None
        assert store.get("tasks", stored["id"], include_deleted=True)["is_deleted"] is True
        assert store.get_all("tasks") == []

    def test_soft_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            store.soft_delete("tasks", "missing")

    def test_soft_delete_twice(self, store):
        stored = store.insert("tasks", make_task())
        store.soft_delete("tasks", stored["id"])

        with pytest.raises(NotFoundError):
            store.soft_delete("tasks", stored["id"])

    def test_hard_delete(self, store):
        stored = store.insert("tasks", make_task())

        assert store.hard_delete("tasks", stored["id"]) is True
        assert store.get("tasks", stored["id"], include_deleted=True) is None
        assert store.hard_delete("tasks", stored["id"]) is False


class TestLocalStoreQueries:
    """Tests for index lookups and filters."""

    def test_query_by_index(self, store):
        store.insert("tasks", make_task(family_id="fam-1"))
        store.insert("tasks", make_task(family_id="fam-1"))
        store.insert("tasks", make_task(family_id="fam-2"))

        results = store.query_by_index("tasks", "family_id", "fam-1")

        assert len(results) == 2
        assert all(t["family_id"] == "fam-1" for t in results)

    def test_query_by_unknown_index(self, store):
        with pytest.raises(ValueError):
            store.query_by_index("tasks", "title", "Feed the cat")

    def test_query_skips_deleted(self, store):
        keep = store.insert("tasks", make_task())
        gone = store.insert("tasks", make_task())
        store.soft_delete("tasks", gone["id"])

        results = store.query_by_index("tasks", "family_id", "fam-1")

        assert [t["id"] for t in results] == [keep["id"]]

    def test_get_all_in_insertion_order(self, store):
        ids = [store.insert("members", {"family_id": "fam-1", "role": "child"})["id"] for _ in range(3)]

        assert [m["id"] for m in store.get_all("members")] == ids

    def test_get_all_with_filter(self, store):
        store.insert("tasks", make_task(status="pending", assigned_to="a"))
        store.insert("tasks", make_task(status="done", assigned_to="a"))
        store.insert("tasks", make_task(status="pending", assigned_to="b"))

        results = store.get_all("tasks", {"status": "pending", "assigned_to": "a"})

        assert len(results) == 1
        assert results[0]["assigned_to"] == "a"

    def test_get_all_filter_requires_index(self, store):
        with pytest.raises(ValueError):
            store.get_all("tasks", {"title": "Feed the cat"})

    def test_boolean_index(self, store):
        store.insert("rewards", {"family_id": "fam-1", "is_active": True})
        store.insert("rewards", {"family_id": "fam-1", "is_active": False})

        active = store.query_by_index("rewards", "is_active", True)

        assert len(active) == 1
        assert active[0]["is_active"] is True

    def test_find_by_change_id_includes_deleted(self, store):
        stored = store.insert("tasks", make_task())
        deleted = store.soft_delete("tasks", stored["id"])

        assert store.find_by_change_id("tasks", stored["change_id"]) is None
        found = store.find_by_change_id("tasks", deleted["change_id"])
        assert found["id"] == stored["id"]


class TestLocalStoreTransactions:
    """Tests for atomic write blocks."""

    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert("tasks", make_task(id="task-1"))
                raise RuntimeError("boom")

        assert store.get("tasks", "task-1") is None

    def test_commit(self, store):
        with store.transaction():
            store.insert("tasks", make_task(id="task-1"))
            store.insert("tasks", make_task(id="task-2"))

        assert store.get("tasks", "task-1") is not None
        assert store.get("tasks", "task-2") is not None

    def test_nested_failure_rolls_back_inner_only(self, store):
        with store.transaction():
            store.insert("tasks", make_task(id="task-1"))
            with pytest.raises(DuplicateKeyError):
                store.insert("tasks", make_task(id="task-1"))
            store.insert("tasks", make_task(id="task-2"))

        assert store.get("tasks", "task-1") is not None
        assert store.get("tasks", "task-2") is not None


class TestLocalStoreState:
    """Tests for durable client state and maintenance."""

    def test_state_roundtrip(self, store):
        assert store.get_state("last_sync_timestamp", 0) == 0

        store.set_state("last_sync_timestamp", 2000)
        store.set_state("last_sync_timestamp", 3000)

        assert store.get_state("last_sync_timestamp") == 3000

    def test_state_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "hearth.db"

        first = LocalStore(db_path)
        first.connect()
        first.set_state("last_sync_timestamp", 1000)
        first.insert("families", {"id": "fam-1", "name": "Smiths"})
        first.close()

        second = LocalStore(db_path)
        second.connect()
        assert second.get_state("last_sync_timestamp") == 1000
        assert second.get("families", "fam-1")["name"] == "Smiths"
        second.close()

    def test_clear(self, store):
        store.insert("tasks", make_task())
        store.set_state("last_sync_timestamp", 1000)

        store.clear()

        assert store.get_all("tasks") == []
        assert store.get_state("last_sync_timestamp") is None

    def test_get_stats(self, store):
        store.insert("tasks", make_task())
        gone = store.insert("tasks", make_task())
        store.soft_delete("tasks", gone["id"])

        stats = store.get_stats()

        assert stats["collections"]["tasks"] == {"live": 1, "deleted": 1}
        assert stats["collections"]["families"] == {"live": 0, "deleted": 0}
