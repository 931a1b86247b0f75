"""Data model shared by the search pipeline and the front-end."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum


class SearchMode(str, Enum):
    """Which producer answers a query."""

    GREP = "grep"
    FILES = "files"


class SessionPhase(str, Enum):
    """Lifecycle phase of a single search session."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"
    DRAINING = "draining"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({SessionPhase.CANCELLED, SessionPhase.COMPLETED, SessionPhase.ERRORED})


@dataclass(frozen=True)
class Query:
    """One search request, stamped with the controller generation that issued it."""

    text: str
    base_path: str
    generation_id: int
    mode: SearchMode = SearchMode.GREP
    pinned_path: str | None = None

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class Match:
    """A search hit, either a content match (with line/column) or a file."""

    absolute_path: str
    relative_path: str
    name: str
    display_text: str
    line: int | None = None
    column: int | None = None
    content: str | None = None

    @property
    def location(self) -> str:
        """Format as ``path[:line[:col]]`` for editors and the clipboard."""
        if self.line is None:
            return self.absolute_path
        if self.column:
            return f"{self.absolute_path}:{self.line}:{self.column}"
        return f"{self.absolute_path}:{self.line}"

    @classmethod
    def for_file(cls, absolute_path: str, base_path: str) -> Match:
        """Build a filename match (no line information) relative to ``base_path``."""
        relative = relative_to_base(absolute_path, base_path)
        return cls(
            absolute_path=absolute_path,
            relative_path=relative,
            name=os.path.basename(absolute_path),
            display_text=relative,
        )


@dataclass(frozen=True)
class Outcome:
    """Cumulative result of a query at the time of a flush."""

    matches: tuple[Match, ...] = ()
    total_matched: int = 0
    truncated: bool = False

    @classmethod
    def empty(cls) -> Outcome:
        return cls()


@dataclass(frozen=True)
class Notice:
    """User-facing side-channel message (never an exception)."""

    level: str
    message: str
    context: dict[str, object] = field(default_factory=dict)

    @property
    def severity(self) -> str:
        """Map to Textual's notification severities."""
        return {"info": "information", "warning": "warning"}.get(self.level, "error")


def relative_to_base(absolute_path: str, base_path: str) -> str:
    """Return ``absolute_path`` relative to ``base_path`` when it lies under it."""
    base = os.path.normpath(base_path)
    try:
        common = os.path.commonpath([base, absolute_path])
    except ValueError:
        # Different drives or mixed absolute/relative
        return absolute_path
    if common != base:
        return absolute_path
    return os.path.relpath(absolute_path, base)
