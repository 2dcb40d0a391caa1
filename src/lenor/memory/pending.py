"""Queue of writes deferred while the device is offline.

The queue is in-memory only. It is filled by the conversation store when
a persist fails while offline, and drained by the connectivity monitor
when the network comes back.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable

from lenor.memory.models import PendingWrite

logger = logging.getLogger(__name__)

ReplayFn = Callable[[PendingWrite], Awaitable[Any] | Any]


class PendingWriteQueue:
    """FIFO of pending writes with copy-then-clear draining.

    Example:
        >>> queue = PendingWriteQueue()
        >>> queue.enqueue(PendingWrite(message=msg, user_id="u1", conversation_id="c1"))
        >>> await queue.drain(replay)
        1
    """

    def __init__(self, max_retries: int | None = None) -> None:
        """Initialize the queue.

        Args:
            max_retries: Drop a write after this many failed replays.
                         None keeps retrying forever.
        """
        self._items: list[PendingWrite] = []
        self._max_retries = max_retries

    def enqueue(self, write: PendingWrite) -> None:
        """Add a write to the back of the queue."""
        self._items.append(write)
        logger.info(
            f"Queued message {write.message.id} for later persistence. Pending: {len(self._items)}"
        )

    async def drain(self, replay: ReplayFn) -> int:
        """Retry every queued write once.

        The queue is copied and cleared before iterating, so writes
        enqueued during the drain wait for the next cycle. Writes whose
        replay raises are re-queued with ``retry_count`` incremented.

        Args:
            replay: Persists one write; raises on failure. May be sync or async.

        Returns:
            Number of writes that were flushed successfully.
        """
        batch = list(self._items)
        self._items.clear()
        if not batch:
            return 0

        logger.info(f"Replaying {len(batch)} pending writes")
        flushed = 0
        for write in batch:
            try:
                result = replay(write)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                write.retry_count += 1
                if self._max_retries is not None and write.retry_count >= self._max_retries:
                    logger.error(
                        f"Dropping message {write.message.id} after {write.retry_count} failed retries: {e}"
                    )
                    continue
                logger.warning(
                    f"Retry {write.retry_count} failed for message {write.message.id}: {e}"
                )
                self._items.append(write)
            else:
                flushed += 1

        logger.info(f"Drain complete: {flushed} flushed, {len(self._items)} still pending")
        return flushed

    def snapshot(self) -> list[PendingWrite]:
        """Copy of the queued writes, oldest first."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
