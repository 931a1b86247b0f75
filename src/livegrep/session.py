"""Lifecycle of a single query: debounce, produce, batch, finish.

A session is created and started by ``SessionController``; nothing else holds
it. Every callback that can run after a suspension point (timer fire, data
available, process exit) checks the session's ``CancellationToken`` and asks
the controller whether the query is still current before touching shared
state. A cancelled or superseded session never calls back again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

from livegrep.backend import CHUNK_SIZE, Backend, BackendProcess
from livegrep.errors import ConfigError, ProcessError, SearchError
from livegrep.logger import get_logger
from livegrep.models import Match, Notice, Outcome, Query, SessionPhase
from livegrep.parser import LineParser
from livegrep.scheduler import CancellationToken, Scheduler, TimerToken
from livegrep.sink import ResultSink

ResultCallback = Callable[[Outcome], None]
NoticeCallback = Callable[[Notice], None]
CurrentCheck = Callable[[Query], bool]
# search(query, cap, concurrency, pinned_path) -> ordered matches
Ranker = Callable[[str, int, int, str | None], Sequence[Match]]

# rg exits 1 when nothing matched
NO_MATCH_EXIT_CODE = 1


class SearchSession:
    """Base session: debounce timer, phase machine and the delivery gate."""

    # Producers that answer a blank query themselves (a full file listing)
    runs_blank_query = False

    def __init__(
        self,
        query: Query,
        *,
        scheduler: Scheduler,
        on_result: ResultCallback,
        on_notice: NoticeCallback,
        is_current: CurrentCheck,
        debounce_ms: int,
        throttle_ms: int,
        max_results: int,
    ) -> None:
        self.query = query
        self.phase = SessionPhase.IDLE
        self.token = CancellationToken()
        self.debounce_ms = debounce_ms
        self._scheduler = scheduler
        self._on_result = on_result
        self._on_notice = on_notice
        self._is_current = is_current
        self._debounce_timer: TimerToken | None = None
        self._released = False
        self.sink = ResultSink(
            scheduler,
            self._deliver,
            throttle_ms=throttle_ms,
            max_results=max_results,
        )
        self.log = get_logger()

    @property
    def generation_id(self) -> int:
        return self.query.generation_id

    @property
    def is_live(self) -> bool:
        return not self.phase.is_terminal

    def start(self) -> None:
        """Schedule the producer after the debounce delay.

        Unless the producer runs blank queries, a blank query resolves
        immediately to an empty outcome.
        """
        if self.phase is not SessionPhase.IDLE:
            return
        if self.query.is_blank and not self.runs_blank_query:
            self._deliver(Outcome.empty())
            self._finish(SessionPhase.COMPLETED)
            return
        if not self._preflight():
            return
        self.phase = SessionPhase.DEBOUNCING
        self._debounce_timer = self._scheduler.schedule(self.debounce_ms, self._on_debounce_fired)

    def cancel(self) -> None:
        """Stop the session. Idempotent; no callback fires afterwards."""
        self.token.cancel()
        self._finish(SessionPhase.CANCELLED)

    def _preflight(self) -> bool:
        return True

    def _run(self) -> None:
        raise NotImplementedError

    def _on_debounce_fired(self) -> None:
        self._debounce_timer = None
        if self.token.cancelled:
            return
        if not self._is_current(self.query):
            # Superseded while waiting: drop silently
            self.log.debug("Debounce dropped", generation=self.generation_id)
            self.token.cancel()
            self._finish(SessionPhase.CANCELLED)
            return
        self.phase = SessionPhase.RUNNING
        self._run()

    def _deliver(self, outcome: Outcome) -> None:
        if self.token.cancelled:
            return
        if not self._is_current(self.query):
            self.log.debug(
                "Discarded stale outcome",
                generation=self.generation_id,
                matches=outcome.total_matched,
            )
            return
        self._on_result(outcome)

    def _report(self, error: SearchError) -> None:
        if self.token.cancelled or not self._is_current(self.query):
            return
        notice = error.to_notice()
        if notice.level == "error":
            self.log.error(notice.message, generation=self.generation_id)
        else:
            self.log.warning(notice.message, generation=self.generation_id)
        self._on_notice(notice)

    def _finish(self, phase: SessionPhase) -> None:
        """Enter a terminal phase. Re-entering one is a no-op."""
        if self.phase.is_terminal:
            return
        self.phase = phase
        if self._debounce_timer is not None:
            self._scheduler.cancel(self._debounce_timer)
            self._debounce_timer = None
        if phase is SessionPhase.CANCELLED:
            self.sink.discard()
        if not self._released:
            self._released = True
            self._release()
        self.log.debug(
            "Session finished",
            generation=self.generation_id,
            phase=phase.value,
            matches=self.sink.emitted_count,
        )

    def _release(self) -> None:
        """Free producer resources. Called exactly once."""


class GrepSession(SearchSession):
    """Streams ``rg`` output through a ``LineParser`` into the sink."""

    def __init__(self, query: Query, *, backend: Backend, **kwargs: object) -> None:
        super().__init__(query, **kwargs)  # type: ignore[arg-type]
        self.backend = backend
        self.parser = LineParser(query.base_path)
        self._process: BackendProcess | None = None
        self._task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Future[bytes] | None = None
        self._terminated = False

    @property
    def process(self) -> BackendProcess | None:
        return self._process

    def _preflight(self) -> bool:
        if self.backend.locate() is None:
            self._report(
                ConfigError(
                    f"{self.backend.executable} not found. Install ripgrep to use live grep."
                )
            )
            self._deliver(Outcome.empty())
            self._finish(SessionPhase.ERRORED)
            return False
        return True

    def _run(self) -> None:
        self._task = asyncio.ensure_future(self._stream())
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.log.error(
            "Search task failed",
            generation=self.generation_id,
            error=f"{type(error).__name__}: {error}",
        )
        self._finish(SessionPhase.ERRORED)

    async def _stream(self) -> None:
        query = self.query
        try:
            process = await self.backend.spawn(query.text, query.base_path)
        except OSError as e:
            self._report(ConfigError(f"Failed to spawn {self.backend.executable}: {e}"))
            self._deliver(Outcome.empty())
            self._finish(SessionPhase.ERRORED)
            return

        self._process = process
        if self.token.cancelled:
            # Cancelled while spawning: _release already ran without a process
            self._terminate()
            self._process = None
            return

        self.log.debug(
            "Spawned backend",
            generation=self.generation_id,
            pid=getattr(process, "pid", None),
            pattern=query.text,
        )
        if process.stderr is not None:
            self._stderr_task = asyncio.ensure_future(process.stderr.read())

        capped = await self._pump(process)
        if self.token.cancelled:
            return

        self.phase = SessionPhase.DRAINING
        if capped:
            # No need to wait for the killed process
            self.sink.close()
            self._finish(SessionPhase.COMPLETED)
            return

        returncode = await process.wait()
        stderr = await self._collect_stderr()
        if self.token.cancelled:
            return
        self.sink.close()
        self._finish_with_status(returncode, stderr)

    async def _pump(self, process: BackendProcess) -> bool:
        """Read stdout to EOF. Returns True if the result cap stopped it early."""
        if process.stdout is None:
            return False
        while True:
            chunk = await process.stdout.read(CHUNK_SIZE)
            if self.token.cancelled:
                return False
            if not chunk:
                break
            if self.sink.extend(self.parser.feed(chunk)):
                self.log.debug("Result cap reached", generation=self.generation_id)
                self._terminate()
                return True
        if self.sink.extend(self.parser.flush()):
            self._terminate()
            return True
        return False

    async def _collect_stderr(self) -> str:
        if self._stderr_task is None:
            return ""
        try:
            data = await self._stderr_task
        except asyncio.CancelledError:
            return ""
        return data.decode("utf-8", errors="replace").strip()

    def _finish_with_status(self, returncode: int | None, stderr: str) -> None:
        if returncode == 0 or returncode == NO_MATCH_EXIT_CODE:
            self._finish(SessionPhase.COMPLETED)
            return
        if returncode is None or (returncode < 0 and self._terminated):
            self._finish(SessionPhase.COMPLETED)
            return
        if returncode < 0:
            message = f"{self.backend.executable} was terminated by signal {-returncode}"
        else:
            message = f"{self.backend.executable} exited with code {returncode}"
        first_line = stderr.splitlines()[0] if stderr else ""
        if first_line:
            message = f"{message}: {first_line}"
        self._report(ProcessError(message, returncode=returncode, stderr=stderr))
        self._finish(SessionPhase.ERRORED)

    def _terminate(self) -> None:
        """Best-effort SIGTERM to the backend."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._terminated = True
        try:
            process.terminate()
        except ProcessLookupError:
            pass  # exited in the meantime
        except OSError as e:
            self.log.debug("Failed to signal backend", error=str(e))

    def _release(self) -> None:
        self._terminate()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
        self._process = None
        self.parser.reset()


class RankingSession(SearchSession):
    """Feeds a synchronous ranking call into the same sink contract.

    A blank query is handed to the ranker too, which lists every file.
    """

    runs_blank_query = True

    def __init__(
        self,
        query: Query,
        *,
        ranker: Ranker,
        concurrency: int = 4,
        **kwargs: object,
    ) -> None:
        super().__init__(query, **kwargs)  # type: ignore[arg-type]
        self.ranker = ranker
        self.concurrency = concurrency

    def _run(self) -> None:
        query = self.query
        try:
            matches = self.ranker(query.text, self.sink.max_results, self.concurrency, query.pinned_path)
        except Exception as e:
            self.log.exception("Ranking failed", generation=self.generation_id)
            self._report(ProcessError(f"Ranking failed: {e}"))
            self.sink.close()
            self._finish(SessionPhase.ERRORED)
            return
        if self.token.cancelled:
            return
        self.phase = SessionPhase.DRAINING
        self.sink.extend(list(matches))
        self.sink.close()
        self._finish(SessionPhase.COMPLETED)
