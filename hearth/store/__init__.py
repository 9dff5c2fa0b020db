"""Local-first storage for Hearth clients.

Provides:
- Keyed entity collections with secondary indexes (SQLite)
- Sync metadata stamping for every local write
- Durable client state (sync watermark)
"""

from .collections import COLLECTIONS, Collection
from .local_store import LocalStore
from .metadata import attach_sync_metadata, missing_metadata, new_id, now_ms

__all__ = [
    "COLLECTIONS",
    "Collection",
    "LocalStore",
    "attach_sync_metadata",
    "missing_metadata",
    "new_id",
    "now_ms",
]
