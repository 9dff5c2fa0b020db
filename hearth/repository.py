"""Domain mutation path: local write plus queued change, atomically."""

import logging
from typing import Any

from .errors import NotFoundError
from .store import LocalStore
from .sync.change_queue import ChangeQueue, Operation

logger = logging.getLogger(__name__)


class Repository:
    """Reads and writes entity records for the application.

    Every mutation is written to the local store and appended to the change
    queue in one transaction, so it succeeds locally whether or not the
    device is online. Physical deletion is not offered here.
    """

    def __init__(self, store: LocalStore, queue: ChangeQueue):
        self.store = store
        self.queue = queue
        self.queue.connect()

    # ==================== Reads ====================

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return self.store.get(collection, record_id)

    def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        """List live records, e.g. ``find("tasks", family_id=fid)``."""
        return self.store.get_all(collection, filters or None)

    def query(self, collection: str, index_name: str, value: Any) -> list[dict[str, Any]]:
        return self.store.query_by_index(collection, index_name, value)

    # ==================== Mutations ====================

    def create(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Create a record and queue it for sync.

        Raises:
            DuplicateKeyError: The record's id already exists.
        """
        with self.store.transaction():
            stored = self.store.insert(collection, record)
            self.queue.enqueue(Operation.CREATE, collection, stored["id"], stored)

        logger.info(f"Created {collection}/{stored['id']}")
        return stored

    def update(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Write a full record (upsert) and queue it for sync."""
        with self.store.transaction():
            stored = self.store.update(collection, record)
            self.queue.enqueue(Operation.UPDATE, collection, stored["id"], stored)

        logger.info(f"Updated {collection}/{stored['id']} (v{stored['sync_version']})")
        return stored

    def patch(
        self, collection: str, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge ``changes`` into an existing record and queue the result.

        Raises:
            NotFoundError: The record is missing or deleted.
        """
        current = self.store.get(collection, record_id)
        if current is None:
            raise NotFoundError(collection, record_id)

        return self.update(collection, {**current, **changes, "id": record_id})

    def delete(self, collection: str, record_id: str) -> dict[str, Any]:
        """Soft-delete a record and queue the tombstone.

        Raises:
            NotFoundError: The record is missing or already deleted.
        """
        with self.store.transaction():
            stored = self.store.soft_delete(collection, record_id)
            self.queue.enqueue(Operation.DELETE, collection, record_id, stored)

        logger.info(f"Deleted {collection}/{record_id}")
        return stored

    def reset(self) -> None:
        """Wipe every record, queued change and sync watermark."""
        with self.store.transaction():
            self.queue.clear()
            self.store.clear()
