"""Throttled, coalescing delivery of parsed matches with a hard result cap."""

from __future__ import annotations

from collections.abc import Callable

from livegrep.models import Match, Outcome
from livegrep.scheduler import Scheduler, TimerToken

DEFAULT_THROTTLE_MS = 80
DEFAULT_MAX_RESULTS = 1000


class ResultSink:
    """Collects matches and hands cumulative ``Outcome`` snapshots to ``on_flush``.

    While matches keep arriving, at most one flush happens per ``throttle_ms``:
    the first accepted append arms a timer and later appends ride along with
    it. ``close`` always flushes. The first append past ``max_results`` flushes
    at once, marks the outcome truncated and returns True so the producer can
    be stopped.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_flush: Callable[[Outcome], None],
        throttle_ms: int = DEFAULT_THROTTLE_MS,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self._scheduler = scheduler
        self._on_flush = on_flush
        self.throttle_ms = throttle_ms
        self.max_results = max_results
        self._matches: list[Match] = []
        self._pending = 0
        self._timer: TimerToken | None = None
        self.truncated = False
        self.closed = False

    @property
    def emitted_count(self) -> int:
        """Matches already handed to ``on_flush``."""
        return len(self._matches) - self._pending

    @property
    def pending_count(self) -> int:
        return self._pending

    def append(self, match: Match) -> bool:
        """Accept one match. Returns True once the cap has been hit."""
        if self.truncated:
            return True
        if self.closed:
            return False
        if len(self._matches) >= self.max_results:
            self.truncated = True
            self._cancel_timer()
            self._flush()
            return True
        self._matches.append(match)
        self._pending += 1
        if self._timer is None:
            self._timer = self._scheduler.schedule(self.throttle_ms, self._on_timer)
        return False

    def extend(self, matches: list[Match]) -> bool:
        """Append until the cap is hit. Returns True if it was."""
        for match in matches:
            if self.append(match):
                return True
        return False

    def close(self) -> Outcome:
        """Final flush at end of input, regardless of timer state."""
        self._cancel_timer()
        if self.closed or (self.truncated and not self._pending):
            self.closed = True
            return self.snapshot()
        outcome = self._flush()
        self.closed = True
        return outcome

    def discard(self) -> None:
        """Drop everything without flushing (cancellation path)."""
        self._cancel_timer()
        self._matches.clear()
        self._pending = 0
        self.closed = True

    def snapshot(self) -> Outcome:
        return Outcome(
            matches=tuple(self._matches),
            total_matched=len(self._matches),
            truncated=self.truncated,
        )

    def _on_timer(self) -> None:
        self._timer = None
        if self._pending and not self.closed:
            self._flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._scheduler.cancel(self._timer)
            self._timer = None

    def _flush(self) -> Outcome:
        outcome = self.snapshot()
        self._pending = 0
        self._on_flush(outcome)
        return outcome
