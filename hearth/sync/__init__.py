"""Sync infrastructure for Hearth clients.

Provides the outbound change queue, the sync manager that reconciles it
with the remote authority (last-write-wins), and the pieces it is built on.
"""

from .authority import LoopbackAuthority, incoming_wins
from .change_queue import ChangeQueue, EntryStatus, Operation, QueueEntry
from .connectivity import ConnectivityMonitor
from .events import EventChannel, SyncEvent, SyncEventKind
from .manager import SyncManager, SyncResult, SyncState, SyncStatus
from .protocol import (
    Authority,
    RejectedChange,
    ServerChange,
    SyncRequest,
    SyncResponse,
)
from .remote import RemoteAuthority

__all__ = [
    "Authority",
    "ChangeQueue",
    "ConnectivityMonitor",
    "EntryStatus",
    "EventChannel",
    "LoopbackAuthority",
    "Operation",
    "QueueEntry",
    "RejectedChange",
    "RemoteAuthority",
    "ServerChange",
    "SyncEvent",
    "SyncEventKind",
    "SyncManager",
    "SyncRequest",
    "SyncResponse",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "incoming_wins",
]
