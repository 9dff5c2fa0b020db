"""Sync manager: drains the change queue against the authority.

Round flow:
1. Read pending changes from the queue (none: done)
2. Send at most ``max_changes_per_sync`` of them, oldest first
3. Remove accepted changes from the queue
4. Remove rejected changes and adopt the authority's version (last-write-wins)
5. Apply changes made elsewhere, skipping ones we already hold
6. Advance and persist the sync watermark
7. Schedule a follow-up round if the queue still has a backlog

Rounds are requested by an interval timer, by the device coming online and
by the application. All of them go through one worker task, and at most one
round runs at a time: a request made while a round is running or already
waiting is dropped and reported as skipped.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import (
    ConcurrentSyncSkipped,
    ConnectivityOfflineError,
    InvalidRecordError,
    SyncError,
)
from ..store import COLLECTIONS, LocalStore
from .change_queue import ChangeQueue, QueueEntry
from .connectivity import ConnectivityMonitor
from .events import EventChannel, SyncEventKind
from .protocol import Authority, SyncRequest, SyncResponse

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_timestamp"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncStatus(Enum):
    """Outcome of a sync round."""

    SUCCESS = "success"
    SKIPPED = "skipped"  # Another round in flight
    OFFLINE = "offline"  # No connectivity, nothing attempted
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sync round."""

    status: SyncStatus
    changes_sent: int = 0
    accepted: int = 0
    rejected: int = 0
    server_changes_applied: int = 0
    server_changes_skipped: int = 0
    remaining: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS


class SyncManager:
    """Long-lived orchestrator of sync rounds for one client.

    Create one per process, ``start()`` it at application start and
    ``stop()`` it at shutdown. Pass the instance to whatever needs to
    trigger or observe synchronization.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: ChangeQueue,
        authority: Authority,
        connectivity: ConnectivityMonitor | None = None,
        events: EventChannel | None = None,
        client_type: str = "cli",
        interval_seconds: float = 30.0,
        max_changes_per_sync: int = 100,
        retry_delay_seconds: float = 5.0,
        follow_up_delay_seconds: float = 2.0,
        online_settle_seconds: float = 1.0,
    ):
        """Initialize the sync manager.

        Args:
            store: Local store the response is applied to.
            queue: Change queue to drain.
            authority: Authority to exchange batches with.
            connectivity: Connectivity monitor (defaults to always-online
                unless told otherwise, no probing).
            events: Channel for lifecycle events.
            client_type: Tag sent with every batch.
            interval_seconds: Seconds between timer-triggered rounds.
            max_changes_per_sync: Maximum changes per batch.
            retry_delay_seconds: Delay before retrying a failed round.
            follow_up_delay_seconds: Delay before draining a remaining backlog.
            online_settle_seconds: Delay after coming online before syncing.
        """
        self.store = store
        self.queue = queue
        self.authority = authority
        self.connectivity = connectivity or ConnectivityMonitor(
            authority, probe_enabled=False
        )
        self.events = events or EventChannel()
        self.client_type = client_type
        self.interval_seconds = interval_seconds
        self.max_changes_per_sync = max_changes_per_sync
        self.retry_delay_seconds = retry_delay_seconds
        self.follow_up_delay_seconds = follow_up_delay_seconds
        self.online_settle_seconds = online_settle_seconds

        self.last_sync_timestamp: int = int(store.get_state(LAST_SYNC_KEY, 0) or 0)
        self._syncing = False
        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._requests: asyncio.Queue[str | None] = asyncio.Queue()
        self._worker_task: asyncio.Task | None = None
        self._timer_task: asyncio.Task | None = None
        self._scheduled: set[asyncio.Task] = set()
        self._remove_connectivity_callback = None

    @classmethod
    def from_config(
        cls,
        config: "Config",
        store: LocalStore,
        queue: ChangeQueue,
        events: EventChannel | None = None,
    ) -> "SyncManager":
        """Build a manager talking to the configured remote authority."""
        from .remote import RemoteAuthority

        authority = RemoteAuthority(
            server_url=config.sync.server_url,
            auth_token=config.sync.auth_token,
            timeout=config.sync.request_timeout_seconds,
            probe_timeout=config.connectivity.probe_timeout_seconds,
        )
        connectivity = ConnectivityMonitor(
            authority,
            check_interval=config.connectivity.check_interval_seconds,
            probe_enabled=config.connectivity.probe_enabled,
        )
        return cls(
            store=store,
            queue=queue,
            authority=authority,
            connectivity=connectivity,
            events=events,
            client_type=config.client.client_type,
            interval_seconds=config.sync.interval_seconds,
            max_changes_per_sync=config.sync.max_changes_per_sync,
            retry_delay_seconds=config.sync.retry_delay_seconds,
            follow_up_delay_seconds=config.sync.follow_up_delay_seconds,
            online_settle_seconds=config.sync.online_settle_seconds,
        )

    # ==================== State ====================

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def state(self) -> SyncState:
        return SyncState.SYNCING if self._syncing else SyncState.IDLE

    def _set_last_sync_timestamp(self, timestamp: int) -> None:
        self.store.set_state(LAST_SYNC_KEY, timestamp)
        self.last_sync_timestamp = timestamp

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with connectivity, queue and watermark info.
        """
        last = self.last_sync_timestamp
        return {
            "is_online": self.is_online,
            "is_syncing": self._syncing,
            "state": self.state.value,
            "pending_changes": self.queue.count_pending(),
            "last_sync_timestamp": last,
            "last_sync_date": (
                datetime.fromtimestamp(last / 1000).isoformat() if last else "Never"
            ),
        }

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start the worker, the interval timer and connectivity tracking."""
        if self._running:
            return

        self._running = True
        self._remove_connectivity_callback = self.connectivity.on_change(
            self._handle_connectivity
        )
        await self.connectivity.start()

        self._worker_task = asyncio.create_task(self._worker())
        self._timer_task = asyncio.create_task(self._timer_loop())

        # Initial round
        self.request_sync("startup")

        logger.info(
            f"SyncManager started (interval={self.interval_seconds}s, "
            f"batch={self.max_changes_per_sync})"
        )

    async def stop(self) -> None:
        """Stop all background work, letting an in-flight round finish."""
        if not self._running:
            return

        self._running = False

        pending = [t for t in [self._timer_task, *self._scheduled] if t]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._scheduled.clear()
        self._timer_task = None

        # Drop anything waiting, then let the worker finish its round
        while not self._requests.empty():
            self._requests.get_nowait()
        self._requests.put_nowait(None)
        if self._worker_task:
            await self._worker_task
            self._worker_task = None

        # A round started through force_sync() runs outside the worker
        await self._idle.wait()

        if self._remove_connectivity_callback:
            self._remove_connectivity_callback()
            self._remove_connectivity_callback = None
        await self.connectivity.stop()
        await self.authority.close()

        logger.info("SyncManager stopped")

    # ==================== Triggers ====================

    def request_sync(self, reason: str) -> bool:
        """Post a sync request to the worker.

        Args:
            reason: What triggered the request (for logs and events).

        Returns:
            True if queued, False if dropped.
        """
        if not self._running:
            logger.debug(f"Not running, '{reason}' request dropped")
            return False

        if self._syncing or not self._requests.empty():
            logger.debug(f"Sync already in progress, dropping '{reason}' request")
            self.events.publish(
                SyncEventKind.SYNC_SKIPPED, reason=reason, cause="in_progress"
            )
            return False

        self._requests.put_nowait(reason)
        return True

    async def force_sync(self) -> SyncResult:
        """Run a round now, on behalf of the application."""
        logger.info("Manual sync triggered")
        self.events.publish(SyncEventKind.SYNC_MANUAL)
        return await self.sync("manual")

    def _schedule(self, delay: float, reason: str) -> None:
        """Request a round after ``delay`` seconds."""
        if not self._running:
            logger.debug(f"Not running, '{reason}' round not scheduled")
            return

        task = asyncio.create_task(self._delayed_request(delay, reason))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)

    async def _delayed_request(self, delay: float, reason: str) -> None:
        await asyncio.sleep(delay)
        self.request_sync(reason)

    async def _timer_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            self.request_sync("interval")

    async def _worker(self) -> None:
        while True:
            reason = await self._requests.get()
            if reason is None:
                break
            await self.sync(reason)

    def _handle_connectivity(self, online: bool) -> None:
        if online:
            self.events.publish(SyncEventKind.ONLINE)
            self._schedule(self.online_settle_seconds, "online")
        else:
            self.events.publish(SyncEventKind.OFFLINE)

    # ==================== Rounds ====================

    def _begin_round(self) -> None:
        """Claim the round, before any suspension point.

        Raises:
            ConcurrentSyncSkipped: A round is already running.
            ConnectivityOfflineError: The device is offline.
        """
        if self._syncing:
            raise ConcurrentSyncSkipped()
        if not self.is_online:
            raise ConnectivityOfflineError()
        self._syncing = True
        self._idle.clear()

    async def sync(self, reason: str = "manual") -> SyncResult:
        """Run one sync round.

        Never raises for sync failures: they are logged, published as
        ``sync_error`` events and retried later.

        Args:
            reason: What triggered the round.

        Returns:
            SyncResult describing the round.
        """
        try:
            self._begin_round()
        except ConcurrentSyncSkipped as e:
            logger.info(f"{e} ({reason})")
            self.events.publish(
                SyncEventKind.SYNC_SKIPPED, reason=reason, cause="in_progress"
            )
            return SyncResult(status=SyncStatus.SKIPPED, error=str(e))
        except ConnectivityOfflineError as e:
            logger.info(f"{e} ({reason})")
            self.events.publish(
                SyncEventKind.SYNC_SKIPPED, reason=reason, cause="offline"
            )
            return SyncResult(status=SyncStatus.OFFLINE, error=str(e))

        try:
            self.events.publish(SyncEventKind.SYNC_START, reason=reason)
            return await self._run_round()
        finally:
            self._syncing = False
            self._idle.set()

    async def _run_round(self) -> SyncResult:
        total_pending = self.queue.count_pending()
        if total_pending == 0:
            logger.debug("No pending changes")
            self.events.publish(SyncEventKind.SYNC_COMPLETE, changes=0, server_changes=0)
            return SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now())

        batch = self.queue.pending(limit=self.max_changes_per_sync)
        request = SyncRequest(
            client_type=self.client_type,
            last_sync_timestamp=self.last_sync_timestamp,
            changes=[entry.to_change() for entry in batch],
        )

        logger.info(f"Syncing {len(batch)} of {total_pending} pending changes")

        try:
            response = await self.authority.exchange(request)
            with self.store.transaction():
                result = self._apply_response(response, batch)
                if response.sync_timestamp:
                    self._set_last_sync_timestamp(response.sync_timestamp)
        except SyncError as e:
            logger.warning(f"Sync failed: {e}")
            return self._fail(e)
        except Exception as e:
            logger.error(f"Sync round error: {e}", exc_info=True)
            return self._fail(e)

        result.changes_sent = len(batch)
        result.remaining = total_pending - len(batch)

        if total_pending > self.max_changes_per_sync:
            logger.info(
                f"{result.remaining} more changes pending, scheduling next sync"
            )
            self._schedule(self.follow_up_delay_seconds, "follow_up")

        logger.info(
            f"Sync: accepted={result.accepted}, rejected={result.rejected}, "
            f"server_changes={result.server_changes_applied}"
        )
        self.events.publish(
            SyncEventKind.SYNC_COMPLETE,
            changes=len(batch),
            server_changes=result.server_changes_applied,
        )
        return result

    def _fail(self, error: Exception) -> SyncResult:
        self.events.publish(SyncEventKind.SYNC_ERROR, error=str(error))

        if self.is_online:
            logger.info(f"Retrying in {self.retry_delay_seconds}s")
            self._schedule(self.retry_delay_seconds, "retry")
        else:
            logger.info("Offline, will retry when online")

        return SyncResult(
            status=SyncStatus.FAILED,
            error=str(error),
            remaining=self.queue.count_pending(),
            timestamp=datetime.now(),
        )

    # ==================== Response Application ====================

    def _apply_response(
        self, response: SyncResponse, batch: list[QueueEntry]
    ) -> SyncResult:
        """Apply the authority's verdict to the queue and the store."""
        result = SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now())
        unmatched = list(batch)
        sent_change_ids = {
            entry.data.get("change_id") for entry in batch if entry.data.get("change_id")
        }

        def take(key: tuple[str, str]) -> QueueEntry | None:
            for i, entry in enumerate(unmatched):
                if entry.key == key:
                    return unmatched.pop(i)
            return None

        for key in response.accepted:
            entry = take(key)
            if entry is None:
                logger.warning(f"Accepted change not in batch: {key[0]}/{key[1]}")
                continue
            self._complete(entry)
            result.accepted += 1

        for rejection in response.rejected:
            entry = take((rejection.table_name, rejection.record_id))
            if entry is not None:
                self._complete(entry)
            result.rejected += 1

            if rejection.server_data:
                if self._write_server_record(rejection.table_name, rejection.server_data):
                    logger.info(
                        f"Applied server version (conflict): "
                        f"{rejection.table_name}/{rejection.record_id}"
                    )

        for change in response.server_changes:
            if self._apply_server_change(change.table_name, change.data, sent_change_ids):
                result.server_changes_applied += 1
            else:
                result.server_changes_skipped += 1

        return result

    def _complete(self, entry: QueueEntry) -> None:
        self.queue.mark_completed(entry.id)
        self.queue.remove(entry.id)
        logger.debug(f"Removed from queue: {entry.table_name}/{entry.record_id}")

    def _apply_server_change(
        self,
        table_name: str,
        data: dict[str, Any],
        sent_change_ids: set[str] | None = None,
    ) -> bool:
        """Apply a change made elsewhere, unless it is one of ours.

        Args:
            table_name: Collection the record belongs to.
            data: Record as stored by the authority.
            sent_change_ids: change_ids of the batch just sent. A record
                edited again during the exchange no longer carries these.

        Returns:
            True if the record was written.
        """
        if table_name not in COLLECTIONS:
            logger.warning(f"Unknown table name: {table_name}")
            return False

        change_id = data.get("change_id")
        if change_id and (
            change_id in (sent_change_ids or ())
            or self.store.find_by_change_id(table_name, change_id)
        ):
            # Our own change coming back
            logger.debug(f"Skipping duplicate change: {table_name}/{data.get('id')}")
            return False

        return self._write_server_record(table_name, data)

    def _write_server_record(self, table_name: str, data: dict[str, Any]) -> bool:
        """Store an authority record verbatim. Never enqueues a change."""
        if table_name not in COLLECTIONS:
            logger.warning(f"Unknown table name: {table_name}")
            return False

        try:
            self.store.update(table_name, data, stamp=False)
        except InvalidRecordError as e:
            logger.error(f"Failed to apply server change: {e}")
            return False

        logger.debug(f"Applied server change: {table_name}/{data.get('id')}")
        return True
