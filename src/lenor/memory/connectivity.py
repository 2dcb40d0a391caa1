"""Network reachability monitoring.

Tracks online/offline transitions, notifies listeners only on actual
changes, and replays deferred writes when the device comes back online.
Status can be pushed by the host platform through ``update_status`` or
polled with an HTTP probe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from lenor.memory.models import PendingWrite
from lenor.memory.pending import PendingWriteQueue

logger = logging.getLogger(__name__)

StatusListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Edge-triggered online/offline tracker.

    Example:
        >>> monitor = ConnectivityMonitor()
        >>> remove = monitor.add_listener(lambda online: print(online))
        >>> monitor.update_status(False)
        >>> monitor.update_status(False)  # no change, no callback
        >>> monitor.get_current_status()
        False
        >>> remove()
    """

    def __init__(
        self,
        initial_status: bool = True,
        probe_url: str | None = None,
        poll_interval: float = 15.0,
        probe_timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            initial_status: Assumed status before the first signal.
            probe_url: URL polled by start(). None disables polling.
            poll_interval: Seconds between probes.
            probe_timeout: Timeout of a single probe in seconds.
            http_client: Preconfigured client for probes.
        """
        self._is_online = initial_status
        self._listeners: list[StatusListener] = []
        self._pending: PendingWriteQueue | None = None
        self._replay: Callable[[PendingWrite], Any] | None = None
        self._drain_task: asyncio.Task[int] | None = None

        self._probe_url = probe_url
        self._poll_interval = poll_interval
        self._probe_timeout = probe_timeout
        self._http_client = http_client
        self._owns_client = False
        self._poll_task: asyncio.Task[None] | None = None

    def get_current_status(self) -> bool:
        """Whether the network is currently reachable."""
        return self._is_online

    def add_listener(self, callback: StatusListener) -> Callable[[], None]:
        """Register a status listener.

        Returns:
            Function removing the listener. Safe to call more than once.
        """
        self._listeners.append(callback)
        removed = False

        def remove() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            self._listeners.remove(callback)

        return remove

    def attach_pending(
        self,
        queue: PendingWriteQueue,
        replay: Callable[[PendingWrite], Any],
    ) -> None:
        """Set the queue drained on reconnect and the function replaying each write."""
        self._pending = queue
        self._replay = replay

    def update_status(self, is_online: bool) -> None:
        """Report the latest reachability signal.

        Listeners fire only when the status actually changes. Going from
        offline to online schedules a drain of the pending writes.
        """
        is_online = bool(is_online)
        if is_online == self._is_online:
            return

        self._is_online = is_online
        logger.info(f"Connection status changed to: {'ONLINE' if is_online else 'OFFLINE'}")

        for listener in list(self._listeners):
            try:
                listener(is_online)
            except Exception:
                logger.exception("Connectivity listener failed")

        if is_online and self._pending:
            self._schedule_drain()

    def _schedule_drain(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, pending writes wait for an explicit drain()")
            return

        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = loop.create_task(self.drain())

    async def drain(self) -> int:
        """Replay pending writes once each.

        Returns:
            Number of writes flushed.
        """
        if self._pending is None or self._replay is None:
            return 0
        if not self._pending:
            return 0

        logger.info(f"Processing {len(self._pending)} pending writes")
        return await self._pending.drain(self._replay)

    async def wait_for_drain(self) -> None:
        """Wait for a drain started by a reconnect, if any."""
        if self._drain_task is not None:
            await self._drain_task

    @property
    def pending_count(self) -> int:
        """Number of writes waiting for replay."""
        return len(self._pending) if self._pending is not None else 0

    # ===== Polling =====

    async def probe(self) -> bool:
        """Check reachability of the probe URL once and update the status.

        Returns:
            The new status.
        """
        if self._probe_url is None:
            return self._is_online

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._probe_timeout)
            self._owns_client = True

        try:
            response = await self._http_client.head(self._probe_url)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self.update_status(online)
        return online

    async def _poll_loop(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self._poll_interval)

    def start(self) -> None:
        """Start polling the probe URL in the background."""
        if self._probe_url is None:
            logger.debug("No probe URL configured, connectivity is push-only")
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
            logger.info(f"Polling connectivity every {self._poll_interval}s")

    async def stop(self) -> None:
        """Stop polling and release the probe client."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False
