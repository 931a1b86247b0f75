"""Incremental parser for ``rg --vimgrep`` output.

Each output line has the form ``path:line:col:content``. Paths may contain
colons (drive letters, URIs) and so may content, so the tokenizer walks the
line from the right and accepts the rightmost pair of colon-delimited
all-digit fields as ``line`` and ``col``. Everything left of that pair is the
path, everything right of it is content.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum, auto

from livegrep.errors import ParseError
from livegrep.logger import get_logger
from livegrep.models import Match, relative_to_base

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")
_URI_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


@dataclass(frozen=True)
class Record:
    """Raw fields of one backend line, before path resolution."""

    path: str
    line: int
    column: int
    content: str


class _State(Enum):
    CONTENT = auto()  # seeking the colon that closes the column field
    COLUMN = auto()  # reading column digits leftwards
    LINE = auto()  # reading line digits leftwards


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def tokenize_line(line: str) -> Record:
    """Split one backend line into its fields.

    Raises ``ParseError`` when no ``path:digits:digits:`` split exists.
    """
    state = _State.CONTENT
    content_colon = column_colon = -1
    i = len(line) - 1
    while i >= 0:
        ch = line[i]
        if state is _State.CONTENT:
            if ch == ":":
                content_colon = i
                state = _State.COLUMN
            i -= 1
        elif state is _State.COLUMN:
            if _is_digit(ch):
                i -= 1
            elif ch == ":" and i < content_colon - 1:
                column_colon = i
                state = _State.LINE
                i -= 1
            else:
                # Not a column field: that colon belonged to the content
                state = _State.CONTENT
        else:
            if _is_digit(ch):
                i -= 1
            elif ch == ":" and 0 < i < column_colon - 1:
                return Record(
                    path=line[:i],
                    line=int(line[i + 1 : column_colon]),
                    column=int(line[column_colon + 1 : content_colon]),
                    content=line[content_colon + 1 :],
                )
            else:
                # The digits read so far may still be a column field
                content_colon = column_colon
                state = _State.COLUMN
    raise ParseError("no path:line:col fields", line=line)


def is_rooted(path: str) -> bool:
    """Whether ``path`` is already absolute and must not be joined to the base path.

    Rooted means POSIX/UNC absolute, a drive letter (``C:\\``, ``C:/``) or a
    URI (``scheme://``). The filesystem is never consulted.
    """
    return bool(os.path.isabs(path) or _DRIVE_RE.match(path) or _URI_RE.match(path))


def resolve_path(path: str, base_path: str) -> str:
    """Return the absolute form of a backend path.

    Drive-letter paths and URIs are returned as they are.
    """
    if not is_rooted(path):
        return os.path.normpath(os.path.join(base_path, path))
    if os.path.isabs(path):
        return os.path.normpath(path)
    return path


class LineParser:
    """Stateful tokenizer turning raw stdout chunks into ``Match`` objects.

    Lines are split on bytes and decoded only once complete, so a multi-byte
    character cut by a chunk boundary decodes the same as an uncut one.
    """

    def __init__(self, base_path: str, encoding: str = "utf-8") -> None:
        self.base_path = base_path
        self.encoding = encoding
        self.parsed_count = 0
        self.dropped_count = 0
        self._buffer = b""

    @property
    def partial_line(self) -> bytes:
        """Bytes of the incomplete trailing line held back from the last feed."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[Match]:
        """Parse every complete line in ``chunk`` plus the retained partial line."""
        if not chunk:
            return []
        lines = (self._buffer + chunk).split(b"\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> list[Match]:
        """Parse the unterminated last line at EOF."""
        remaining, self._buffer = self._buffer, b""
        if not remaining:
            return []
        return self._parse_lines([remaining])

    def reset(self) -> None:
        """Discard buffered input."""
        self._buffer = b""

    def parse_line(self, raw: bytes) -> Match:
        """Turn one raw line into a ``Match``. Raises ``ParseError`` if malformed."""
        text = raw.decode(self.encoding, errors="replace")
        if text.endswith("\r"):
            text = text[:-1]
        record = tokenize_line(text)
        absolute = resolve_path(record.path, self.base_path)
        relative = relative_to_base(absolute, self.base_path)
        return Match(
            absolute_path=absolute,
            relative_path=relative,
            name=os.path.basename(absolute.rstrip("/\\")) or absolute,
            display_text=f"{relative}:{record.line}:{record.content}",
            line=record.line,
            column=record.column,
            content=record.content,
        )

    def _parse_lines(self, lines: list[bytes]) -> list[Match]:
        matches: list[Match] = []
        for raw in lines:
            if not raw.strip():
                continue
            try:
                matches.append(self.parse_line(raw))
            except ParseError as e:
                self.dropped_count += 1
                get_logger().debug("Dropped malformed line", line=e.line[:120])
        self.parsed_count += len(matches)
        return matches
