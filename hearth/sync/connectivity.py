"""Connectivity tracking for the sync loop."""

import asyncio
import logging
from collections.abc import Callable

from .protocol import Authority

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks whether the authority is reachable.

    State changes come from periodic health probes against the authority
    or from the application calling ``set_online`` (e.g. an OS network
    event). Callbacks fire only on transitions.
    """

    def __init__(
        self,
        authority: Authority | None = None,
        check_interval: float = 15.0,
        probe_enabled: bool = True,
        initial_online: bool = True,
    ):
        """Initialize the monitor.

        Args:
            authority: Authority to probe (required when probing).
            check_interval: Seconds between probes.
            probe_enabled: Run the background probe loop on start().
            initial_online: Assumed state before the first probe.
        """
        self._authority = authority
        self._interval = check_interval
        self._probe_enabled = probe_enabled and authority is not None
        self._online = initial_online
        self._callbacks: list[Callable[[bool], None]] = []
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_online(self) -> bool:
        return self._online

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a transition callback.

        Returns:
            A callable that removes the callback.
        """
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def set_online(self, online: bool) -> None:
        """Record the current state, notifying on transitions."""
        if online == self._online:
            return

        self._online = online
        logger.info("Device is online" if online else "Device is offline")

        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}", exc_info=True)

    async def probe(self) -> bool:
        """Probe the authority once and record the result."""
        if self._authority is None:
            return self._online

        online = await self._authority.health_check()
        self.set_online(online)
        return online

    async def start(self) -> None:
        """Start the probe loop as a background task."""
        if self._running or not self._probe_enabled:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connectivity monitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.probe()
            except Exception as e:
                logger.error(f"Connectivity probe failed: {e}")
                self.set_online(False)

            await asyncio.sleep(self._interval)
