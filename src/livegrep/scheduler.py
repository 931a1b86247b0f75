"""Timer scheduling and cooperative cancellation for the search pipeline.

Everything in the pipeline runs on one asyncio loop. Debounce, throttle and
render timers go through a ``Scheduler`` so the same code runs against the
real loop or against ``FakeScheduler``, whose clock only moves when a test
calls ``advance``.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable
from typing import Any, Protocol


class TimerToken:
    """Handle returned by ``Scheduler.schedule``."""

    __slots__ = ("callback", "due", "cancelled", "_handle")

    def __init__(self, callback: Callable[[], Any], due: float) -> None:
        self.callback = callback
        self.due = due
        self.cancelled = False
        self._handle: asyncio.TimerHandle | None = None


class Scheduler(Protocol):
    """Schedules callbacks on the event loop after a delay in milliseconds."""

    def schedule(self, after_ms: float, callback: Callable[[], Any]) -> TimerToken: ...

    def cancel(self, token: TimerToken | None) -> None: ...


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later`` on the running loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, after_ms: float, callback: Callable[[], Any]) -> TimerToken:
        token = TimerToken(callback, self.loop.time() + after_ms / 1000)

        def fire() -> None:
            if not token.cancelled:
                token.cancelled = True
                callback()

        token._handle = self.loop.call_later(max(0.0, after_ms) / 1000, fire)
        return token

    def cancel(self, token: TimerToken | None) -> None:
        if token is None or token.cancelled:
            return
        token.cancelled = True
        if token._handle is not None:
            token._handle.cancel()


class FakeScheduler:
    """Deterministic scheduler with a manually advanced clock.

    Callbacks run synchronously inside ``advance`` in due-time order; timers
    scheduled by a callback fire in the same ``advance`` call if they fall
    inside the window.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, TimerToken]] = []
        self._seq = itertools.count()

    def schedule(self, after_ms: float, callback: Callable[[], Any]) -> TimerToken:
        token = TimerToken(callback, self.now + max(0.0, after_ms))
        heapq.heappush(self._queue, (token.due, next(self._seq), token))
        return token

    def cancel(self, token: TimerToken | None) -> None:
        if token is not None:
            token.cancelled = True

    @property
    def pending(self) -> int:
        """Number of timers that have not fired or been cancelled."""
        return sum(1 for _, _, token in self._queue if not token.cancelled)

    def advance(self, ms: float = 0) -> int:
        """Move the clock forward by ``ms`` and fire due timers. Returns how many fired."""
        target = self.now + ms
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, token = heapq.heappop(self._queue)
            if token.cancelled:
                continue
            self.now = max(self.now, due)
            token.cancelled = True
            token.callback()
            fired += 1
        self.now = target
        return fired


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Mark cancelled. Returns False if it already was."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True
