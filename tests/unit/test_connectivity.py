"""Tests for the connectivity monitor."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from lenor.memory.connectivity import ConnectivityMonitor
from lenor.memory.models import Message, PendingWrite
from lenor.memory.pending import PendingWriteQueue


def make_write(message_id: str) -> PendingWrite:
    return PendingWrite(message=Message(id=message_id, text="x"), user_id="u1", conversation_id="c1")


class TestStatusChanges:
    """Tests for edge-triggered listeners."""

    def test_initial_status(self) -> None:
        """Test the monitor reports its initial status."""
        assert ConnectivityMonitor().get_current_status() is True
        assert ConnectivityMonitor(initial_status=False).get_current_status() is False

    def test_listener_fires_only_on_change(self, monitor: ConnectivityMonitor) -> None:
        """Test repeated identical signals notify once."""
        seen: list[bool] = []
        monitor.add_listener(seen.append)

        monitor.update_status(True)
        monitor.update_status(False)
        monitor.update_status(False)
        monitor.update_status(True)
        monitor.update_status(True)

        assert seen == [False, True]

    def test_remove_listener_idempotent(self, monitor: ConnectivityMonitor) -> None:
        """Test removing a listener twice is harmless."""
        seen: list[bool] = []
        remove = monitor.add_listener(seen.append)

        remove()
        remove()
        monitor.update_status(False)

        assert seen == []

    def test_failing_listener_does_not_block_others(self, monitor: ConnectivityMonitor) -> None:
        """Test one listener raising does not stop the rest."""
        seen: list[bool] = []

        def broken(is_online: bool) -> None:
            raise RuntimeError("listener bug")

        monitor.add_listener(broken)
        monitor.add_listener(seen.append)
        monitor.update_status(False)

        assert seen == [False]
        assert monitor.get_current_status() is False


class TestDrainOnReconnect:
    """Tests for replaying pending writes."""

    @pytest.mark.asyncio
    async def test_reconnect_drains_once(self, monitor: ConnectivityMonitor) -> None:
        """Test offline to online replays each queued write exactly once."""
        queue = PendingWriteQueue()
        replayed: list[str] = []
        monitor.attach_pending(queue, lambda write: replayed.append(write.message.id))

        monitor.update_status(False)
        queue.enqueue(make_write("a"))
        queue.enqueue(make_write("b"))
        monitor.update_status(True)
        await monitor.wait_for_drain()

        # A duplicate online signal must not replay again
        monitor.update_status(True)
        await monitor.wait_for_drain()

        assert replayed == ["a", "b"]
        assert monitor.pending_count == 0

    @pytest.mark.asyncio
    async def test_going_offline_does_not_drain(self, monitor: ConnectivityMonitor) -> None:
        """Test only the offline to online edge triggers a drain."""
        queue = PendingWriteQueue()
        queue.enqueue(make_write("a"))
        monitor.attach_pending(queue, lambda write: pytest.fail("should not replay"))

        monitor.update_status(False)
        await asyncio.sleep(0)

        assert monitor.pending_count == 1

    @pytest.mark.asyncio
    async def test_explicit_drain(self) -> None:
        """Test drain() replays without a status change."""
        monitor = ConnectivityMonitor()
        queue = PendingWriteQueue()
        queue.enqueue(make_write("a"))
        replayed: list[str] = []

        async def replay(write: PendingWrite) -> None:
            replayed.append(write.message.id)

        monitor.attach_pending(queue, replay)

        assert await monitor.drain() == 1
        assert replayed == ["a"]

    def test_reconnect_without_loop_keeps_queue(self) -> None:
        """Test a reconnect outside an event loop leaves writes queued."""
        monitor = ConnectivityMonitor(initial_status=False)
        queue = PendingWriteQueue()
        queue.enqueue(make_write("a"))
        monitor.attach_pending(queue, lambda write: None)

        monitor.update_status(True)

        assert monitor.get_current_status() is True
        assert monitor.pending_count == 1

    @pytest.mark.asyncio
    async def test_drain_without_queue(self) -> None:
        """Test drain() with nothing attached returns 0."""
        assert await ConnectivityMonitor().drain() == 0


class TestProbe:
    """Tests for the HTTP reachability probe."""

    @pytest.mark.asyncio
    async def test_probe_reachable(self) -> None:
        """Test a response below 500 counts as online."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        monitor = ConnectivityMonitor(
            initial_status=False, probe_url="https://probe.test/", http_client=client
        )

        assert await monitor.probe() is True
        assert monitor.get_current_status() is True

    @pytest.mark.asyncio
    async def test_probe_unreachable(self) -> None:
        """Test a transport error counts as offline."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor(probe_url="https://probe.test/", http_client=client)
        seen: list[bool] = []
        monitor.add_listener(seen.append)

        assert await monitor.probe() is False
        assert seen == [False]

    @pytest.mark.asyncio
    async def test_probe_disabled(self) -> None:
        """Test probe() without a URL reports the current status."""
        monitor = ConnectivityMonitor(initial_status=False)
        assert await monitor.probe() is False

    @pytest.mark.asyncio
    async def test_start_and_stop_polling(self) -> None:
        """Test the poll loop probes until stopped."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor(
            initial_status=False,
            probe_url="https://probe.test/",
            poll_interval=0.01,
            http_client=client,
        )

        monitor.start()
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert calls and calls[0] == "HEAD"
        assert monitor.get_current_status() is True
