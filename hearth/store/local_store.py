"""Local SQLite storage for entity collections with sync metadata."""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import (
    DuplicateKeyError,
    InvalidRecordError,
    NotFoundError,
    UnknownCollectionError,
)
from .collections import COLLECTIONS, Collection
from .metadata import attach_sync_metadata, missing_metadata

logger = logging.getLogger(__name__)

# Columns every collection table carries besides its indexed attributes
BASE_COLUMNS = ("id", "data", "change_id", "sync_version", "last_modified", "is_deleted")

# Durable scalar state (sync watermark and friends)
STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS client_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def _collection_schema(collection: Collection) -> str:
    """Build the CREATE statements for one collection."""
    extra = [f for f in collection.indexes if f not in BASE_COLUMNS]
    columns = [
        "id TEXT PRIMARY KEY",
        "data TEXT NOT NULL",
        "change_id TEXT NOT NULL",
        "sync_version INTEGER NOT NULL",
        "last_modified INTEGER NOT NULL",
        "is_deleted INTEGER NOT NULL DEFAULT 0",
    ]
    # Untyped columns keep the value's own storage class
    columns.extend(f'"{name}"' for name in extra)

    statements = [
        f"CREATE TABLE IF NOT EXISTS {collection.table} (\n    "
        + ",\n    ".join(columns)
        + "\n);",
        f"CREATE INDEX IF NOT EXISTS idx_{collection.table}_change_id "
        f"ON {collection.table}(change_id);",
    ]
    for name in collection.indexes:
        statements.append(
            f"CREATE INDEX IF NOT EXISTS idx_{collection.table}_{name} "
            f'ON {collection.table}("{name}");'
        )
    return "\n".join(statements)


def _index_value(value: Any) -> Any:
    """Convert a record attribute to the value stored in its index column."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


class LocalStore:
    """SQLite-backed keyed collections with secondary indexes.

    Every record is stored as a JSON document next to dedicated columns for
    its sync metadata and indexed attributes, so index queries never scan
    the whole collection. Soft-deleted rows stay in the table and are
    filtered out of every read path unless asked for explicitly.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file (or ":memory:").
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transactions are managed explicitly
        self._conn = sqlite3.connect(
            str(self.db_path), check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.executescript(STATE_SCHEMA)
        for collection in COLLECTIONS.values():
            self._conn.executescript(_collection_schema(collection))

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    @property
    def connection(self) -> sqlite3.Connection:
        """The shared connection, for components storing tables alongside."""
        return self._ensure_connected()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically.

        Nested blocks join the enclosing transaction through a savepoint, so
        a failure inside them rolls back only their own writes unless the
        exception escapes the outer block too.
        """
        conn = self._ensure_connected()

        if self._tx_depth:
            savepoint = f"sp_{self._tx_depth}"
            conn.execute(f"SAVEPOINT {savepoint}")
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                conn.execute(f"ROLLBACK TO {savepoint}")
                conn.execute(f"RELEASE {savepoint}")
                raise
            else:
                conn.execute(f"RELEASE {savepoint}")
            finally:
                self._tx_depth -= 1
            return

        conn.execute("BEGIN")
        self._tx_depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._tx_depth = 0

    def _collection(self, name: str) -> Collection:
        collection = COLLECTIONS.get(name)
        if collection is None:
            raise UnknownCollectionError(name)
        return collection

    @staticmethod
    def _decode(row: sqlite3.Row) -> dict[str, Any]:
        return json.loads(row["data"])

    # ==================== Read Operations ====================

    def get(
        self, collection: str, record_id: str, include_deleted: bool = False
    ) -> dict[str, Any] | None:
        """Look up a record by id.

        Args:
            collection: Collection name.
            record_id: Record id.
            include_deleted: Also return soft-deleted rows.

        Returns:
            The record, or None if missing (or soft-deleted).
        """
        table = self._collection(collection).table
        conn = self._ensure_connected()

        row = conn.execute(
            f"SELECT data, is_deleted FROM {table} WHERE id = ?",
            (record_id,),
        ).fetchone()

        if row is None or (row["is_deleted"] and not include_deleted):
            return None
        return self._decode(row)

    def get_all(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Get all live records, optionally narrowed by indexed attributes.

        Args:
            collection: Collection name.
            filter: Equality filter, {attribute: value}. Every attribute
                must be indexed on the collection.

        Returns:
            List of records in insertion order.
        """
        coll = self._collection(collection)
        conn = self._ensure_connected()

        clauses = ["is_deleted = 0"]
        params: list[Any] = []
        for name, value in (filter or {}).items():
            if name not in coll.indexes:
                raise ValueError(f"'{name}' is not indexed on {collection}")
            if value is None:
                clauses.append(f'"{name}" IS NULL')
            else:
                clauses.append(f'"{name}" = ?')
                params.append(_index_value(value))

        cursor = conn.execute(
            f"SELECT data FROM {coll.table} WHERE {' AND '.join(clauses)} "
            "ORDER BY rowid",
            params,
        )
        return [self._decode(row) for row in cursor]

    def query_by_index(
        self, collection: str, index_name: str, value: Any
    ) -> list[dict[str, Any]]:
        """Equality lookup through a named secondary index.

        Args:
            collection: Collection name.
            index_name: Indexed attribute (e.g. "family_id").
            value: Value to match.

        Returns:
            Matching live records.
        """
        coll = self._collection(collection)
        if index_name not in coll.indexes:
            raise ValueError(f"No index '{index_name}' on {collection}")
        return self.get_all(collection, {index_name: value})

    def find_by_change_id(
        self, collection: str, change_id: str
    ) -> dict[str, Any] | None:
        """Find the record currently carrying ``change_id``, deleted or not."""
        table = self._collection(collection).table
        conn = self._ensure_connected()

        row = conn.execute(
            f"SELECT data FROM {table} WHERE change_id = ? LIMIT 1",
            (change_id,),
        ).fetchone()
        return self._decode(row) if row else None

    # ==================== Write Operations ====================

    def _row_values(
        self, coll: Collection, record: dict[str, Any]
    ) -> tuple[list[str], list[Any]]:
        extra = [f for f in coll.indexes if f not in BASE_COLUMNS]
        columns = list(BASE_COLUMNS) + extra
        values = [
            record["id"],
            json.dumps(record),
            record["change_id"],
            record["sync_version"],
            record["last_modified"],
            int(bool(record["is_deleted"])),
        ]
        values.extend(_index_value(record.get(name)) for name in extra)
        return columns, values

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a new record.

        Args:
            collection: Collection name.
            record: Record fields; an id is generated if absent.

        Returns:
            The stored record with sync metadata.

        Raises:
            DuplicateKeyError: A record with this id already exists.
        """
        coll = self._collection(collection)
        stored = attach_sync_metadata(record)
        columns, values = self._row_values(coll, stored)
        quoted = ", ".join(f'"{c}"' for c in columns)
        placeholders = ", ".join("?" * len(columns))

        with self.transaction() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {coll.table} ({quoted}) VALUES ({placeholders})",
                    values,
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(collection, stored["id"]) from e

        logger.debug(f"Inserted {collection}/{stored['id']}")
        return stored

    def update(
        self,
        collection: str,
        record: dict[str, Any],
        stamp: bool = True,
    ) -> dict[str, Any]:
        """Write a record by key, creating it if absent.

        Args:
            collection: Collection name.
            record: Full record to store.
            stamp: Re-attach sync metadata, bumping sync_version past both
                the given record and the stored row. Pass False to store a
                record exactly as received from the authority.

        Returns:
            The stored record.

        Raises:
            InvalidRecordError: ``stamp`` is False and metadata is missing.
        """
        coll = self._collection(collection)
        if not stamp:
            missing = missing_metadata(record)
            if missing:
                raise InvalidRecordError(collection, missing)

        with self.transaction() as conn:
            if stamp:
                previous = None
                if record.get("id") is not None:
                    previous = self.get(collection, record["id"], include_deleted=True)
                stored = attach_sync_metadata(record, previous=previous)
            else:
                stored = dict(record)

            columns, values = self._row_values(coll, stored)
            quoted = ", ".join(f'"{c}"' for c in columns)
            placeholders = ", ".join("?" * len(columns))
            assignments = ", ".join(f'"{c}" = excluded."{c}"' for c in columns[1:])

            conn.execute(
                f"INSERT INTO {coll.table} ({quoted}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {assignments}",
                values,
            )

        logger.debug(
            f"Updated {collection}/{stored['id']} (v{stored['sync_version']})"
        )
        return stored

    def soft_delete(self, collection: str, record_id: str) -> dict[str, Any]:
        """Mark a record deleted, keeping the row as a sync tombstone.

        Raises:
            NotFoundError: The record is missing or already deleted.
        """
        record = self.get(collection, record_id)
        if record is None:
            raise NotFoundError(collection, record_id)

        record["is_deleted"] = True
        return self.update(collection, record)

    def hard_delete(self, collection: str, record_id: str) -> bool:
        """Physically remove a row. For internal cleanup only.

        Returns:
            True if a row was removed.
        """
        table = self._collection(collection).table

        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))

        return cursor.rowcount > 0

    # ==================== Client State ====================

    def get_state(self, key: str, default: Any = None) -> Any:
        """Read a durable scalar."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM client_state WHERE key = ?", (key,)
        ).fetchone()
        return json.loads(row["value"]) if row else default

    def set_state(self, key: str, value: Any) -> None:
        """Persist a durable scalar."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO client_state (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value)),
            )

    # ==================== Maintenance ====================

    def clear(self) -> None:
        """Delete every record and all client state."""
        with self.transaction() as conn:
            for collection in COLLECTIONS.values():
                conn.execute(f"DELETE FROM {collection.table}")
            conn.execute("DELETE FROM client_state")

        logger.info("LocalStore cleared")

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics.

        Returns:
            Dict with live and deleted counts per collection and size info.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"collections": {}}
        for collection in COLLECTIONS.values():
            row = conn.execute(
                f"SELECT COUNT(*) AS total, COALESCE(SUM(is_deleted), 0) AS deleted "
                f"FROM {collection.table}"
            ).fetchone()
            stats["collections"][collection.name] = {
                "live": row["total"] - row["deleted"],
                "deleted": row["deleted"],
            }

        # Database file size
        if self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
