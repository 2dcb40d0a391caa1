"""Incremental reveal of assistant replies to simulate typing.

Runs on the asyncio event loop with one timer outstanding at a time, so
cancelling a run never leaves a dangling callback behind.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable

from lenor.config import TypingUnit
from lenor.memory.models import Message

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]
CompleteCallback = Callable[[str], None]

_WORD_BOUNDARY = re.compile(r"\S+\s*")


def reveal_points(text: str, step: int, unit: TypingUnit = TypingUnit.CHAR) -> list[int]:
    """Lengths of the strictly growing proper prefixes shown while typing.

    Example:
        >>> reveal_points("hello", 2)
        [2, 4]
        >>> reveal_points("hi there you", 1, TypingUnit.WORD)
        [3, 9]
    """
    if step <= 0:
        raise ValueError("step must be positive")

    if unit == TypingUnit.WORD:
        ends = [match.end() for match in _WORD_BOUNDARY.finditer(text)]
        points = ends[step - 1 :: step]
    else:
        points = list(range(step, len(text), step))

    return [point for point in points if 0 < point < len(text)]


class TypingRun:
    """Handle of one running animation.

    Calling the handle (or ``cancel()``) stops it; no callback fires
    afterwards.
    """

    def __init__(
        self,
        text: str,
        on_partial: PartialCallback,
        on_complete: CompleteCallback,
        interval: float,
        points: list[int],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._text = text
        self._on_partial = on_partial
        self._on_complete = on_complete
        self._interval = interval
        self._points = points
        self._position = 0
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._finished: asyncio.Future[bool] = loop.create_future()

    def _start(self) -> None:
        self._handle = self._loop.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self._finished.done():
            return

        try:
            if self._position < len(self._points):
                end = self._points[self._position]
                self._position += 1
                self._on_partial(self._text[:end])
                if not self._finished.done():
                    self._handle = self._loop.call_later(self._interval, self._tick)
                return

            self._finished.set_result(True)
            self._on_complete(self._text)
        except Exception:
            logger.exception("Typing callback failed, stopping animation")
            if not self._finished.done():
                self._finished.set_result(False)

    def cancel(self) -> None:
        """Stop the animation. Idempotent."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if not self._finished.done():
            self._finished.set_result(False)

    def __call__(self) -> None:
        self.cancel()

    @property
    def done(self) -> bool:
        """Whether the run completed or was cancelled."""
        return self._finished.done()

    @property
    def completed(self) -> bool:
        """Whether the run delivered its completion callback."""
        return self._finished.done() and self._finished.result()

    async def wait(self) -> bool:
        """Wait for the run to end.

        Returns:
            True if it completed, False if it was cancelled or failed.
        """
        return await asyncio.shield(self._finished)


def simulate_typing(
    text: str,
    on_partial: PartialCallback,
    on_complete: CompleteCallback,
    interval: float = 0.03,
    step: int = 3,
    unit: TypingUnit = TypingUnit.CHAR,
) -> TypingRun:
    """Reveal text progressively.

    on_partial receives strictly growing proper prefixes of text, one per
    interval; on_complete then receives the full text exactly once.

    Must be called with a running event loop.

    Args:
        text: Full text to reveal.
        on_partial: Called with each partial prefix.
        on_complete: Called once with the full text.
        interval: Seconds between steps.
        step: Characters (or words) revealed per step.
        unit: Step granularity.

    Returns:
        Cancellation handle.
    """
    loop = asyncio.get_running_loop()
    run = TypingRun(text, on_partial, on_complete, interval, reveal_points(text, step, unit), loop)
    run._start()
    return run


class TypingSequencer:
    """Per-message typing animations, at most one running per message.

    Example:
        >>> sequencer = TypingSequencer(interval=0.03, step=3)
        >>> sequencer.animate(message, show, lambda text: store.mark_as_animated(message.id))
    """

    def __init__(
        self,
        interval: float = 0.03,
        step: int = 3,
        unit: TypingUnit = TypingUnit.CHAR,
    ) -> None:
        self._interval = interval
        self._step = step
        self._unit = unit
        self._runs: dict[str, TypingRun] = {}

    def animate(
        self,
        message: Message,
        on_partial: PartialCallback,
        on_complete: CompleteCallback,
    ) -> TypingRun | None:
        """Start the typing animation of a message.

        A run already going for the same message is cancelled first.
        Messages that are the user's own, not flagged for typing, or
        already animated are shown in full at once through on_partial
        and no run is started.

        Returns:
            The run handle, or None if the text was shown immediately.
        """
        self.cancel(message.id)

        if message.is_user or not message.animate_typing or message.has_been_animated:
            on_partial(message.text)
            return None

        def complete(text: str) -> None:
            if self._runs.get(message.id) is run:
                del self._runs[message.id]
            on_complete(text)

        run = simulate_typing(
            message.text,
            on_partial,
            complete,
            interval=self._interval,
            step=self._step,
            unit=self._unit,
        )
        self._runs[message.id] = run
        return run

    def cancel(self, message_id: str) -> None:
        """Cancel the run of one message, if any."""
        run = self._runs.pop(message_id, None)
        if run is not None:
            run.cancel()
            logger.debug(f"Cancelled typing animation of {message_id}")

    def cancel_all(self) -> None:
        """Cancel every running animation."""
        for message_id in list(self._runs):
            self.cancel(message_id)

    def is_animating(self, message_id: str) -> bool:
        """Whether a run is active for the message."""
        run = self._runs.get(message_id)
        return run is not None and not run.done
