"""Tests for the Repository mutation path."""

import pytest

from hearth import Repository
from hearth.errors import DuplicateKeyError, NotFoundError
from hearth.store import LocalStore
from hearth.sync import ChangeQueue, Operation


@pytest.fixture
def store():
    """Create an in-memory LocalStore for testing."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def queue(store):
    return ChangeQueue(store)


@pytest.fixture
def repo(store, queue):
    return Repository(store, queue)


class TestRepositoryMutations:
    """Every mutation lands in the store and the queue together."""

    def test_create(self, repo, queue):
        task = repo.create("tasks", {"family_id": "fam-1", "title": "Dishes"})

        pending = queue.pending()
        assert len(pending) == 1
        assert pending[0].operation == Operation.CREATE
        assert pending[0].record_id == task["id"]
        assert pending[0].data == task
        assert repo.get("tasks", task["id"]) == task

    def test_create_duplicate_enqueues_nothing(self, repo, queue):
        repo.create("tasks", {"id": "task-1", "title": "Dishes"})

        with pytest.raises(DuplicateKeyError):
            repo.create("tasks", {"id": "task-1", "title": "Laundry"})

        assert queue.count_pending() == 1
        assert repo.get("tasks", "task-1")["title"] == "Dishes"

    def test_update(self, repo, queue):
        task = repo.create("tasks", {"title": "Dishes"})

        updated = repo.update("tasks", {**task, "status": "done"})

        assert updated["sync_version"] == 2
        pending = queue.pending()
        assert [e.operation for e in pending] == [Operation.CREATE, Operation.UPDATE]
        assert pending[1].data["sync_version"] == 2

    def test_patch(self, repo):
        task = repo.create("tasks", {"title": "Dishes", "status": "pending"})

        patched = repo.patch("tasks", task["id"], {"status": "done"})

        assert patched["title"] == "Dishes"
        assert patched["status"] == "done"
        assert patched["sync_version"] == 2

    def test_patch_missing(self, repo, queue):
        with pytest.raises(NotFoundError):
            repo.patch("tasks", "missing", {"status": "done"})
        assert queue.count_pending() == 0

    def test_delete(self, repo, queue):
        task = repo.create("tasks", {"title": "Dishes"})

        tombstone = repo.delete("tasks", task["id"])

        assert tombstone["is_deleted"] is True
        assert repo.get("tasks", task["id"]) is None
        last = queue.pending()[-1]
        assert last.operation == Operation.DELETE
        assert last.data["is_deleted"] is True

    def test_delete_missing(self, repo, queue):
        with pytest.raises(NotFoundError):
            repo.delete("tasks", "missing")
        assert queue.count_pending() == 0


class TestRepositoryReads:
    """Tests for read helpers."""

    def test_find_and_query(self, repo):
        repo.create("members", {"family_id": "fam-1", "role": "parent"})
        repo.create("members", {"family_id": "fam-1", "role": "child"})
        repo.create("members", {"family_id": "fam-2", "role": "child"})

        assert len(repo.find("members")) == 3
        assert len(repo.find("members", family_id="fam-1", role="child")) == 1
        assert len(repo.query("members", "role", "child")) == 2

    def test_reset(self, repo, store, queue):
        repo.create("tasks", {"title": "Dishes"})
        store.set_state("last_sync_timestamp", 1000)

        repo.reset()

        assert repo.find("tasks") == []
        assert queue.count_pending() == 0
        assert store.get_state("last_sync_timestamp") is None
