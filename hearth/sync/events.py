"""Sync lifecycle events and the channel that publishes them."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..store import now_ms

logger = logging.getLogger(__name__)


class SyncEventKind(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    SYNC_START = "sync_start"
    SYNC_COMPLETE = "sync_complete"
    SYNC_ERROR = "sync_error"
    SYNC_SKIPPED = "sync_skipped"
    SYNC_MANUAL = "sync_manual"


@dataclass(frozen=True)
class SyncEvent:
    """A lifecycle notification from the SyncManager."""

    kind: SyncEventKind
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


Listener = Callable[[SyncEvent], None]


class EventChannel:
    """Observer registry for SyncEvents.

    Listeners are called synchronously in subscription order. A listener
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that unsubscribes the listener.
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def publish(self, kind: SyncEventKind, **data: Any) -> SyncEvent:
        event = SyncEvent(kind=kind, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Sync listener failed on {kind.value}: {e}", exc_info=True)
        return event

    def __len__(self) -> int:
        return len(self._listeners)
