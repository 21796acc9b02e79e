"""Online/offline tracking with a reconnect edge that triggers a sync."""

import asyncio
import logging
from typing import Awaitable, Callable

from ..storage import OperationQueue
from .engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]
ReachabilityProbe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Tracks network reachability for the sync engine.

    `is_online` is the level; `just_reconnected` is a one-shot edge flag
    that reads True once after each offline -> online transition.
    """

    def __init__(
        self,
        queue: OperationQueue,
        engine: SyncEngine | None = None,
        initially_online: bool = True,
        auto_sync: bool = True,
    ):
        """Initialize the monitor.

        Args:
            queue: Operation queue checked on reconnect.
            engine: Sync engine to trigger; None disables auto sync.
            initially_online: Starting level.
            auto_sync: Run a full sync on each reconnect edge.
        """
        self._queue = queue
        self._engine = engine
        self._online = initially_online
        self._reconnected = False
        self.auto_sync = auto_sync
        self._callbacks: list[ConnectivityCallback] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def just_reconnected(self) -> bool:
        """True once after a reconnect; reading it clears the flag."""
        reconnected = self._reconnected
        self._reconnected = False
        return reconnected

    def add_callback(self, callback: ConnectivityCallback) -> None:
        """Add a callback called with the new level on every transition."""
        self._callbacks.append(callback)

    async def set_online(self, online: bool) -> SyncReport | None:
        """Feed a reachability reading.

        Returns:
            The SyncReport if this reading was a reconnect edge that
            triggered a sync, else None.
        """
        was_online = self._online
        self._online = online

        if online == was_online:
            return None

        logger.info("Network is back online" if online else "Network went offline")
        for callback in self._callbacks:
            callback(online)

        if not online:
            self._reconnected = False
            return None

        self._reconnected = True

        if not (self.auto_sync and self._engine) or self._queue.is_empty():
            return None

        logger.info(f"Reconnected with {len(self._queue)} pending operations, syncing")
        return await self._engine.full_sync()

    async def watch(
        self,
        probe: ReachabilityProbe,
        interval_seconds: float = 15,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll a reachability probe and feed the results to set_online.

        Args:
            probe: Async callable returning True when the server is reachable.
            interval_seconds: Seconds between probes.
            stop_event: Event to signal the loop should stop.
        """
        logger.info(f"Starting connectivity watch with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                await self.set_online(await probe())
            except Exception as e:
                logger.error(f"Connectivity watch error: {e}")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(interval_seconds)

        logger.info("Connectivity watch stopped")
