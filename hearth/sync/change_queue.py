"""Ordered outbound log of local mutations waiting for the authority.

Entries live in the same SQLite database as the entity collections so a
record write and its queue entry commit together.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..store import LocalStore, now_ms

logger = logging.getLogger(__name__)

QUEUE_SCHEMA = """
-- Sync queue: append/remove only, replayed in id order
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    operation TEXT NOT NULL,
    record_id TEXT NOT NULL,
    data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at INTEGER NOT NULL,
    completed_at INTEGER
);

CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue(status, id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_table ON sync_queue(table_name);
CREATE INDEX IF NOT EXISTS idx_sync_queue_record ON sync_queue(record_id);
"""


class Operation(str, Enum):
    """Kind of local mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class QueueEntry:
    """A single pending outbound mutation."""

    id: int
    table_name: str
    operation: Operation
    record_id: str
    data: dict[str, Any]
    status: EntryStatus
    created_at: int
    completed_at: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        """(table_name, record_id) used to match authority results."""
        return (self.table_name, self.record_id)

    def to_change(self) -> dict[str, Any]:
        """The wire form sent to the authority."""
        return {
            "table_name": self.table_name,
            "operation": self.operation.value,
            "record_id": self.record_id,
            "data": self.data,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "id": self.id,
            "table_name": self.table_name,
            "operation": self.operation.value,
            "record_id": self.record_id,
            "data": self.data,
            "status": self.status.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "QueueEntry":
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            operation=Operation(row["operation"]),
            record_id=row["record_id"],
            data=json.loads(row["data"]),
            status=EntryStatus(row["status"]),
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )


class ChangeQueue:
    """Append-only queue of pending changes, owned by the SyncManager.

    Domain code only appends (through the Repository); the SyncManager
    reads pending entries and removes them once the authority has
    resolved them.
    """

    def __init__(self, store: LocalStore):
        """Initialize the change queue.

        Args:
            store: LocalStore whose database holds the queue table.
        """
        self.store = store
        self._ready = False

    def connect(self) -> None:
        """Create the queue table if needed."""
        if self._ready:
            return
        # Statement by statement: executescript would commit an open transaction
        conn = self.store.connection
        for statement in QUEUE_SCHEMA.split(";"):
            if statement.strip():
                conn.execute(statement)
        self._ready = True

    def _ensure_connected(self) -> sqlite3.Connection:
        if not self._ready:
            self.connect()
        return self.store.connection

    def enqueue(
        self,
        operation: Operation | str,
        table_name: str,
        record_id: str,
        data: dict[str, Any],
    ) -> QueueEntry:
        """Append a pending entry.

        Args:
            operation: create, update or delete.
            table_name: Collection the record belongs to.
            record_id: Id of the mutated record.
            data: Full record snapshot.

        Returns:
            The created QueueEntry.
        """
        self._ensure_connected()
        operation = Operation(operation)
        created_at = now_ms()

        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (
                    table_name, operation, record_id, data, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    table_name,
                    operation.value,
                    record_id,
                    json.dumps(data),
                    EntryStatus.PENDING.value,
                    created_at,
                ),
            )

        logger.debug(f"Queued {operation.value} for {table_name}/{record_id}")
        return QueueEntry(
            id=cursor.lastrowid,
            table_name=table_name,
            operation=operation,
            record_id=record_id,
            data=data,
            status=EntryStatus.PENDING,
            created_at=created_at,
        )

    def pending(self, limit: int | None = None) -> list[QueueEntry]:
        """Get pending entries in queue order.

        Args:
            limit: Maximum entries to return (None for all).

        Returns:
            List of QueueEntry objects, oldest first.
        """
        conn = self._ensure_connected()

        cursor = conn.execute(
            """
            SELECT * FROM sync_queue
            WHERE status = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (EntryStatus.PENDING.value, -1 if limit is None else limit),
        )
        return [QueueEntry.from_row(row) for row in cursor]

    def count_pending(self) -> int:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT COUNT(*) FROM sync_queue WHERE status = ?",
            (EntryStatus.PENDING.value,),
        ).fetchone()
        return row[0]

    def mark_completed(self, entry_id: int) -> bool:
        """Flag an entry completed ahead of its removal."""
        self._ensure_connected()

        with self.store.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ?, completed_at = ? WHERE id = ?",
                (EntryStatus.COMPLETED.value, now_ms(), entry_id),
            )
        return cursor.rowcount > 0

    def remove(self, entry_id: int) -> bool:
        """Physically delete an entry.

        Returns:
            True if the entry existed.
        """
        self._ensure_connected()

        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Drop every entry. Used by a full local reset."""
        self._ensure_connected()

        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue")

        if cursor.rowcount:
            logger.info(f"Dropped {cursor.rowcount} queued changes")
        return cursor.rowcount

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics.

        Returns:
            Dictionary with entry counts.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {}

        cursor = conn.execute("SELECT COUNT(*) FROM sync_queue")
        stats["total_entries"] = cursor.fetchone()[0]
        stats["pending_entries"] = self.count_pending()

        cursor = conn.execute(
            "SELECT table_name, COUNT(*) FROM sync_queue WHERE status = ? "
            "GROUP BY table_name",
            (EntryStatus.PENDING.value,),
        )
        stats["pending_by_table"] = {row[0]: row[1] for row in cursor}

        return stats
