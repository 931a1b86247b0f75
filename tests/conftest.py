"""Shared fixtures: isolated cache dirs, a fake clock and a fake rg backend."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from livegrep.backend import Backend
from livegrep.scheduler import FakeScheduler
from livegrep.settings import SettingsDict, default_settings


@pytest.fixture(autouse=True, scope="session")
def isolated_logs(tmp_path_factory: pytest.TempPathFactory) -> Iterator[Path]:
    """Keep log files out of the real home directory."""
    log_dir = tmp_path_factory.mktemp("logs")
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("livegrep.logger.LOG_DIR", log_dir)
        mp.setattr("livegrep.logger._logger", None)
        yield log_dir


@pytest.fixture(autouse=True)
def temp_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the settings file at a temporary directory."""
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    monkeypatch.setattr("livegrep.settings.CACHE_DIR", cache_dir)
    monkeypatch.setattr("livegrep.settings.SETTINGS_PATH", cache_dir / "settings.json")
    return cache_dir


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process`` fed by the test."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.terminate_calls = 0
        self._exited = asyncio.Event()

    def emit(self, data: bytes) -> None:
        """Write to stdout (ignored once the process has exited)."""
        if self.returncode is None:
            self.stdout.feed_data(data)

    def exit(self, code: int, stderr: bytes = b"") -> None:
        if self.returncode is not None:
            return
        if stderr:
            self.stderr.feed_data(stderr)
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        self.exit(-15)


class FakeBackend(Backend):
    """Backend that hands out ``FakeProcess`` objects instead of running rg."""

    def __init__(self, available: bool = True, spawn_error: OSError | None = None) -> None:
        super().__init__()
        self.available = available
        self.spawn_error = spawn_error
        self.spawned: list[tuple[str, str]] = []
        self.processes: list[FakeProcess] = []

    def locate(self) -> str | None:
        return "/usr/bin/rg" if self.available else None

    async def spawn(self, pattern: str, root: str) -> FakeProcess:  # type: ignore[override]
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.append((pattern, root))
        process = FakeProcess(pid=4242 + len(self.processes))
        self.processes.append(process)
        return process


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def settings() -> SettingsDict:
    return default_settings()


async def settle(turns: int = 25) -> None:
    """Let pending tasks run for a few loop turns."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def drain() -> Callable[..., object]:
    return settle
