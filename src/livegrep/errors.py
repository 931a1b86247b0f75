"""Error taxonomy for the search pipeline.

None of these reach the front-end as exceptions. Sessions catch them at the
seams and turn them into ``Notice`` objects via ``to_notice``.
"""

from __future__ import annotations

from livegrep.models import Notice


class SearchError(Exception):
    """Base class for pipeline errors."""

    level = "error"

    def to_notice(self) -> Notice:
        return Notice(level=self.level, message=str(self))


class ConfigError(SearchError):
    """The backend cannot be used (missing executable, spawn failure)."""


class ParseError(SearchError):
    """A backend output line could not be tokenized."""

    level = "warning"

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class ProcessError(SearchError):
    """The producer failed after it started (bad exit status, ranker crash)."""

    level = "warning"

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def to_notice(self) -> Notice:
        return Notice(
            level=self.level,
            message=str(self),
            context={"returncode": self.returncode, "stderr": self.stderr},
        )
