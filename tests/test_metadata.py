"""Tests for sync metadata stamping."""

from hearth.store import attach_sync_metadata, missing_metadata, new_id


class TestAttachSyncMetadata:
    """Tests for attach_sync_metadata."""

    def test_new_record(self):
        stamped = attach_sync_metadata({"title": "Dishes"}, now=1000)

        assert stamped["title"] == "Dishes"
        assert stamped["id"]
        assert stamped["last_modified"] == 1000
        assert stamped["created_at"] == 1000
        assert stamped["sync_version"] == 1
        assert stamped["is_deleted"] is False
        assert stamped["change_id"]

    def test_existing_record_bumps_version(self):
        original = {
            "id": "task-1",
            "title": "Dishes",
            "sync_version": 3,
            "change_id": "old",
            "last_modified": 1000,
            "created_at": 500,
            "is_deleted": False,
        }

        stamped = attach_sync_metadata(original, now=2000)

        assert stamped["id"] == "task-1"
        assert stamped["sync_version"] == 4
        assert stamped["change_id"] != "old"
        assert stamped["last_modified"] == 2000
        assert stamped["created_at"] == 500

    def test_previous_version_wins(self):
        previous = {"id": "task-1", "sync_version": 5, "created_at": 500}

        stamped = attach_sync_metadata({"id": "task-1"}, now=2000, previous=previous)

        assert stamped["sync_version"] == 6
        assert stamped["created_at"] == 500

    def test_newer_record_version_wins(self):
        stamped = attach_sync_metadata(
            {"id": "task-1", "sync_version": 7}, previous={"sync_version": 5}
        )
        assert stamped["sync_version"] == 8

    def test_falsy_id_kept(self):
        assert attach_sync_metadata({"id": ""})["id"] == ""
        assert attach_sync_metadata({"id": 0})["id"] == 0
        assert attach_sync_metadata({"id": None})["id"]

    def test_does_not_mutate_input(self):
        original = {"title": "Dishes"}

        attach_sync_metadata(original)

        assert original == {"title": "Dishes"}

    def test_keeps_deleted_flag(self):
        stamped = attach_sync_metadata({"id": "x", "is_deleted": True})
        assert stamped["is_deleted"] is True

    def test_change_ids_are_unique(self):
        record = {"id": "task-1"}
        first = attach_sync_metadata(record)
        second = attach_sync_metadata(record)

        assert first["change_id"] != second["change_id"]

    def test_uses_current_time(self):
        stamped = attach_sync_metadata({})
        assert stamped["last_modified"] > 1_600_000_000_000


def test_missing_metadata():
    assert missing_metadata({"id": "x"}) == [
        "last_modified",
        "change_id",
        "sync_version",
        "is_deleted",
    ]
    complete = attach_sync_metadata({})
    assert missing_metadata(complete) == []


def test_new_id_unique():
    assert len({new_id() for _ in range(100)}) == 100
