"""Hearth: local-first data layer with last-write-wins sync."""

from .repository import Repository
from .store import LocalStore
from .sync import ChangeQueue, SyncManager

__version__ = "0.1.0"

__all__ = ["ChangeQueue", "LocalStore", "Repository", "SyncManager", "__version__"]
