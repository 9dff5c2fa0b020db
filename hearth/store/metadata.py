"""Sync metadata stamped onto every record before it is written."""

import time
import uuid
from typing import Any

# Fields every persisted record must carry
REQUIRED_FIELDS = ("id", "last_modified", "change_id", "sync_version", "is_deleted")


def new_id() -> str:
    """Generate a globally unique identifier."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def attach_sync_metadata(
    record: dict[str, Any],
    now: int | None = None,
    previous: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Return a copy of ``record`` stamped for a local write.

    Args:
        record: Record to stamp. May already carry metadata from a
            previous write, in which case ``sync_version`` is bumped.
        now: Timestamp to use in ms (defaults to the current time).
        previous: Stored version of the record, if any. Its
            ``sync_version`` and ``created_at`` win over stale or missing
            values in ``record``.

    Returns:
        New dict with id, last_modified, change_id, sync_version,
        is_deleted and created_at set.
    """
    if now is None:
        now = now_ms()
    previous = previous or {}

    stamped = dict(record)
    if record.get("id") is None:
        stamped["id"] = new_id()
    stamped["last_modified"] = now
    stamped["change_id"] = new_id()
    stamped["sync_version"] = max(
        record.get("sync_version") or 0, previous.get("sync_version") or 0
    ) + 1
    stamped["is_deleted"] = bool(record.get("is_deleted", False))
    stamped["created_at"] = previous.get("created_at") or record.get("created_at") or now
    return stamped


def missing_metadata(record: dict[str, Any]) -> list[str]:
    """List the required metadata fields absent from ``record``."""
    return [name for name in REQUIRED_FIELDS if record.get(name) is None]
