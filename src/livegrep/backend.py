"""The external content-search backend (ripgrep)."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from livegrep.settings import SettingsDict

DEFAULT_EXECUTABLE = "rg"
DEFAULT_RG_ARGS: tuple[str, ...] = ("--vimgrep", "--no-heading", "--hidden")
CHUNK_SIZE = 64 * 1024


class BackendProcess(Protocol):
    """The subset of ``asyncio.subprocess.Process`` a session drives."""

    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None

    @property
    def returncode(self) -> int | None: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...


class Backend:
    """Builds and spawns ``rg`` invocations.

    The pattern is passed after ``--`` so queries starting with a dash are
    never read as flags.
    """

    def __init__(
        self,
        executable: str = DEFAULT_EXECUTABLE,
        base_args: Sequence[str] = DEFAULT_RG_ARGS,
        extra_flags: Sequence[str] = (),
    ) -> None:
        self.executable = executable
        self.base_args = tuple(base_args)
        self.extra_flags = tuple(extra_flags)

    @classmethod
    def from_settings(cls, settings: SettingsDict) -> Backend:
        return cls(
            base_args=settings["rg_args"],
            extra_flags=settings["extra_flags"],
        )

    def locate(self) -> str | None:
        """Resolve the executable on PATH, or None when it is not installed."""
        return shutil.which(self.executable)

    def command(self, pattern: str, root: str) -> list[str]:
        return [self.executable, *self.base_args, *self.extra_flags, "--", pattern, root]

    async def spawn(self, pattern: str, root: str) -> BackendProcess:
        """Start the backend without blocking the loop. Raises OSError on failure."""
        return await asyncio.create_subprocess_exec(
            *self.command(pattern, root),
            cwd=root,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
