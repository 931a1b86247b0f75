"""Cursor, viewport and selection over a result list that changes under the user.

Indices are 1-based. With an empty list the cursor and viewport top both sit
at 1.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from enum import Enum

from livegrep.models import Match
from livegrep.scheduler import Scheduler, TimerToken


class Anchor(str, Enum):
    """Where the cursor lands after a new result set arrives."""

    FIRST = "first"  # prompt on top, best match first
    LAST = "last"  # prompt at the bottom, best match next to it

    @classmethod
    def for_prompt(cls, prompt_position: str) -> Anchor:
        return cls.LAST if prompt_position == "bottom" else cls.FIRST


class PresentationState:
    """View model consumed by the front-end.

    ``replace`` only requests a redraw; requests made before the next loop
    turn are coalesced into a single ``on_render`` call. Cursor moves render
    right away.
    """

    def __init__(
        self,
        viewport_height: int = 10,
        anchor: Anchor = Anchor.FIRST,
        scheduler: Scheduler | None = None,
        on_render: Callable[[PresentationState], None] | None = None,
    ) -> None:
        self.items: list[Match] = []
        self.cursor_index = 1
        self.viewport_top = 1
        self.viewport_height = max(1, viewport_height)
        self.anchor = anchor
        self.render_count = 0
        self._scheduler = scheduler
        self._on_render = on_render
        self._render_token: TimerToken | None = None

    def __len__(self) -> int:
        return len(self.items)

    @property
    def viewport_bottom(self) -> int:
        return self.viewport_top + self.viewport_height - 1

    @property
    def render_pending(self) -> bool:
        return self._render_token is not None

    def replace(self, items: Sequence[Match]) -> None:
        """Install a new ordered result set and reset the cursor to the anchor."""
        self.items = list(items)
        if not self.items:
            self.cursor_index = 1
            self.viewport_top = 1
        elif self.anchor is Anchor.LAST:
            self.cursor_index = len(self.items)
            self.viewport_top = max(1, self.cursor_index - self.viewport_height + 1)
        else:
            self.cursor_index = 1
            self.viewport_top = 1
        self.request_render()

    def move_cursor(self, delta: int) -> bool:
        """Move by ``delta`` rows, clamped; scroll only as far as needed.

        Returns True if the cursor moved.
        """
        if not self.items:
            return False
        target = min(max(self.cursor_index + delta, 1), len(self.items))
        if target == self.cursor_index:
            return False
        self.cursor_index = target
        self._scroll_to_cursor()
        self.render_now()
        return True

    def select(self, index: int | None = None) -> Match | None:
        """Return the item at ``index`` (default: the cursor), or None if out of range."""
        if index is None:
            index = self.cursor_index
        if 1 <= index <= len(self.items):
            return self.items[index - 1]
        return None

    def set_viewport_height(self, height: int) -> None:
        """Resize the viewport, keeping the cursor inside it."""
        height = max(1, height)
        if height == self.viewport_height:
            return
        self.viewport_height = height
        self._scroll_to_cursor()
        # A taller viewport must not leave empty rows below the last item
        self.viewport_top = max(1, min(self.viewport_top, len(self.items) - height + 1))
        self.request_render()

    def visible_items(self) -> Iterator[tuple[int, Match]]:
        """Yield ``(index, item)`` for each row inside the viewport."""
        stop = min(len(self.items), self.viewport_bottom)
        for index in range(self.viewport_top, stop + 1):
            yield index, self.items[index - 1]

    def request_render(self) -> None:
        """Schedule a redraw on the next loop turn unless one is already queued."""
        if self._on_render is None:
            return
        if self._scheduler is None:
            self.render_now()
            return
        if self._render_token is None:
            self._render_token = self._scheduler.schedule(0, self._render_fired)

    def render_now(self) -> None:
        """Redraw immediately, absorbing any queued request."""
        if self._render_token is not None and self._scheduler is not None:
            self._scheduler.cancel(self._render_token)
        self._render_token = None
        if self._on_render is not None:
            self.render_count += 1
            self._on_render(self)

    def _render_fired(self) -> None:
        self._render_token = None
        self.render_now()

    def _scroll_to_cursor(self) -> None:
        if self.cursor_index < self.viewport_top:
            self.viewport_top = self.cursor_index
        elif self.cursor_index > self.viewport_bottom:
            self.viewport_top = self.cursor_index - self.viewport_height + 1
        self.viewport_top = max(1, self.viewport_top)
