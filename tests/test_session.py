"""Tests for search sessions driven through the controller."""

import shutil
from typing import Any

import pytest

from livegrep.controller import SessionController
from livegrep.models import Match, Notice, Outcome, Query, SearchMode, SessionPhase
from livegrep.scheduler import AsyncioScheduler, FakeScheduler
from livegrep.session import GrepSession, RankingSession
from livegrep.settings import default_settings

BASE = "/repo"


class Recorder:
    """Collects controller callbacks."""

    def __init__(self) -> None:
        self.results: list[Outcome] = []
        self.notices: list[Notice] = []

    def controller(
        self, scheduler: Any, backend: Any = None, ranker: Any = None, **overrides: Any
    ) -> SessionController:
        settings = default_settings()
        settings.update(overrides)  # type: ignore[typeddict-item]
        return SessionController(
            scheduler,
            on_results=self.results.append,
            on_notice=self.notices.append,
            settings=settings,
            backend=backend,
            ranker=ranker,
        )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


class TestDebounce:
    """Only the query the user stopped on reaches the backend."""

    @pytest.mark.asyncio
    async def test_fast_typing_spawns_once(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        first = ctl.start("foo", BASE)
        scheduler.advance(10)
        ctl.start("foobar", BASE)
        assert first.phase is SessionPhase.CANCELLED
        scheduler.advance(119)
        await drain()
        assert backend.spawned == []
        scheduler.advance(1)
        await drain()
        assert backend.spawned == [("foobar", BASE)]
        ctl.cancel()
        await drain()

    @pytest.mark.asyncio
    async def test_blank_query_is_immediate_and_empty(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("   ", BASE)
        assert recorder.results == [Outcome.empty()]
        assert session.phase is SessionPhase.COMPLETED
        assert scheduler.pending == 0
        assert backend.spawned == []

    @pytest.mark.asyncio
    async def test_single_live_session(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        sessions = [ctl.start(text, BASE) for text in ("a", "ab", "abc", "abcd")]
        assert [s.is_live for s in sessions] == [False, False, False, True]
        assert ctl.current is sessions[-1]
        assert [s.generation_id for s in sessions] == [1, 2, 3, 4]


class TestStreaming:
    """Output is parsed, throttled and delivered cumulatively."""

    @pytest.mark.asyncio
    async def test_results_stream_and_complete(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("x", BASE)
        scheduler.advance(120)
        await drain()
        proc = backend.processes[0]
        assert session.phase is SessionPhase.RUNNING

        proc.emit(b"a.py:1:1:x\nb.py:2:3:x\n")
        await drain()
        assert recorder.results == []
        scheduler.advance(80)
        assert recorder.results[-1].total_matched == 2

        proc.emit(b"c.py:3:1:x")
        await drain()
        scheduler.advance(80)
        assert len(recorder.results) == 1

        proc.exit(0)
        await drain()
        final = recorder.results[-1]
        assert len(recorder.results) == 2
        assert [m.relative_path for m in final.matches] == ["a.py", "b.py", "c.py"]
        assert not final.truncated
        assert session.phase is SessionPhase.COMPLETED
        assert recorder.notices == []

    @pytest.mark.asyncio
    async def test_no_matches_exit_code(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("zzz", BASE)
        scheduler.advance(120)
        await drain()
        backend.processes[0].exit(1)
        await drain()
        assert recorder.results == [Outcome.empty()]
        assert recorder.notices == []
        assert session.phase is SessionPhase.COMPLETED

    @pytest.mark.asyncio
    async def test_error_exit_keeps_partial_results(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("(", BASE)
        scheduler.advance(120)
        await drain()
        proc = backend.processes[0]
        proc.emit(b"a.py:1:1:(\n")
        proc.exit(2, stderr=b"regex parse error:\n    (\n")
        await drain()
        assert recorder.results[-1].total_matched == 1
        assert len(recorder.notices) == 1
        notice = recorder.notices[0]
        assert notice.level == "warning"
        assert notice.message == "rg exited with code 2: regex parse error:"
        assert notice.context["returncode"] == 2
        assert session.phase is SessionPhase.ERRORED

    @pytest.mark.asyncio
    async def test_cap_terminates_backend(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend, max_results=2)
        session = ctl.start("x", BASE)
        scheduler.advance(120)
        await drain()
        proc = backend.processes[0]
        proc.emit(b"a.py:1:1:x\nb.py:1:1:x\nc.py:1:1:x\nd.py:1:1:x\n")
        await drain()
        assert proc.terminate_calls == 1
        assert len(recorder.results) == 1
        outcome = recorder.results[0]
        assert outcome.truncated
        assert outcome.total_matched == 2
        assert session.phase is SessionPhase.COMPLETED
        assert recorder.notices == []
        scheduler.advance(1000)
        assert len(recorder.results) == 1


class TestCancellation:
    """Superseded sessions never call back."""

    @pytest.mark.asyncio
    async def test_supersede_stops_old_process(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        old = ctl.start("foo", BASE)
        scheduler.advance(120)
        await drain()
        old_proc = backend.processes[0]
        old_proc.emit(b"foo.py:1:1:foo\n")
        await drain()

        ctl.start("bar", BASE)
        assert old_proc.terminate_calls == 1
        assert old.phase is SessionPhase.CANCELLED
        scheduler.advance(120)
        await drain()
        new_proc = backend.processes[1]
        new_proc.emit(b"bar.py:1:1:bar\n")
        new_proc.exit(0)
        await drain()

        assert all(m.name == "bar.py" for o in recorder.results for m in o.matches)
        assert recorder.results[-1].total_matched == 1

    @pytest.mark.asyncio
    async def test_cancel_before_debounce(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("foo", BASE)
        ctl.cancel()
        scheduler.advance(500)
        await drain()
        assert backend.spawned == []
        assert recorder.results == []
        assert session.phase is SessionPhase.CANCELLED

    @pytest.mark.asyncio
    async def test_stale_outcome_is_dropped(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        drain: Any,
    ) -> None:
        delivered: list[Outcome] = []
        current = {"ok": True}
        session = GrepSession(
            Query(text="foo", base_path=BASE, generation_id=1),
            backend=backend,
            scheduler=scheduler,
            on_result=delivered.append,
            on_notice=lambda notice: None,
            is_current=lambda query: current["ok"],
            debounce_ms=0,
            throttle_ms=80,
            max_results=100,
        )
        session.start()
        scheduler.advance(0)
        await drain()
        backend.processes[0].emit(b"foo.py:1:1:foo\n")
        await drain()
        current["ok"] = False
        scheduler.advance(80)
        assert delivered == []
        session.cancel()
        await drain()

    @pytest.mark.asyncio
    async def test_interleaved_queries_only_show_latest(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        drain: Any,
    ) -> None:
        seen: list[tuple[int, Outcome]] = []
        ctl: SessionController

        def on_results(outcome: Outcome) -> None:
            seen.append((ctl.generation, outcome))

        ctl = SessionController(scheduler, on_results, settings=default_settings(), backend=backend)
        names = {}
        for step, text in enumerate(["a", "ab", "abc", "abd", "x"]):
            session = ctl.start(text, BASE)
            names[session.generation_id] = f"{text}.py"
            scheduler.advance(120 if step % 2 else 30)
            await drain()
            for proc in backend.processes:
                proc.emit(f"{text}.py:1:1:{text}\n".encode())
            await drain()
            scheduler.advance(80)
            await drain()

        # "x" is still debouncing
        scheduler.advance(120)
        await drain()
        last = backend.processes[-1]
        last.emit(b"x.py:1:1:x\n")
        last.exit(0)
        await drain()

        assert len(backend.processes) == 3
        assert [generation for generation, _ in seen] == [2, 4, 5]
        for generation, outcome in seen:
            assert all(m.name == names[generation] for m in outcome.matches)
        assert seen[-1][0] == ctl.generation
        assert [m.name for m in seen[-1][1].matches] == ["x.py"]
        ctl.cancel()

    @pytest.mark.asyncio
    async def test_failing_delivery_ends_session(
        self,
        scheduler: FakeScheduler,
        backend: Any,
        drain: Any,
    ) -> None:
        def on_results(outcome: Outcome) -> None:
            raise RuntimeError("view gone")

        ctl = SessionController(scheduler, on_results, settings=default_settings(), backend=backend)
        session = ctl.start("foo", BASE)
        scheduler.advance(120)
        await drain()
        proc = backend.processes[0]
        proc.emit(b"foo.py:1:1:foo\n")
        proc.exit(0)
        await drain()
        assert session.phase is SessionPhase.ERRORED
        assert not session.is_live


class TestBackendFailures:
    """Configuration problems become notices, not exceptions."""

    @pytest.mark.asyncio
    async def test_missing_backend_reported_once(
        self,
        scheduler: FakeScheduler,
        make_backend: Any,
        recorder: Recorder,
    ) -> None:
        backend = make_backend(available=False)
        ctl = recorder.controller(scheduler, backend)
        first = ctl.start("a", BASE)
        ctl.start("ab", BASE)
        assert first.phase is SessionPhase.ERRORED
        assert len(recorder.notices) == 1
        assert recorder.notices[0].level == "error"
        assert "rg not found" in recorder.notices[0].message
        assert recorder.results == [Outcome.empty(), Outcome.empty()]
        assert backend.spawned == []

    @pytest.mark.asyncio
    async def test_spawn_failure(
        self,
        scheduler: FakeScheduler,
        make_backend: Any,
        recorder: Recorder,
        drain: Any,
    ) -> None:
        backend = make_backend(spawn_error=PermissionError(13, "Permission denied"))
        ctl = recorder.controller(scheduler, backend)
        session = ctl.start("a", BASE)
        scheduler.advance(120)
        await drain()
        assert session.phase is SessionPhase.ERRORED
        assert recorder.results == [Outcome.empty()]
        assert recorder.notices[0].message.startswith("Failed to spawn rg")


class TestRankingSession:
    """Filename ranking uses the same sink contract."""

    def _ranker(self, count: int) -> Any:
        calls: list[tuple[str, int, int, str | None]] = []

        def rank(query: str, cap: int, concurrency: int, pinned: str | None) -> list[Match]:
            calls.append((query, cap, concurrency, pinned))
            return [Match.for_file(f"{BASE}/f{i}.py", BASE) for i in range(count)]

        rank.calls = calls  # type: ignore[attr-defined]
        return rank

    def test_results_delivered_once(self, scheduler: FakeScheduler, recorder: Recorder) -> None:
        ranker = self._ranker(3)
        ctl = recorder.controller(scheduler, ranker=ranker, ranking_concurrency=2)
        session = ctl.start("f", BASE, mode=SearchMode.FILES, pinned_path="/repo/f0.py")
        assert isinstance(session, RankingSession)
        scheduler.advance(0)
        assert ranker.calls == [("f", 1000, 2, "/repo/f0.py")]
        assert len(recorder.results) == 1
        assert recorder.results[0].total_matched == 3
        assert session.phase is SessionPhase.COMPLETED

    def test_blank_query_lists_files(self, scheduler: FakeScheduler, recorder: Recorder) -> None:
        ranker = self._ranker(2)
        ctl = recorder.controller(scheduler, ranker=ranker)
        session = ctl.start("", BASE, mode=SearchMode.FILES)
        scheduler.advance(0)
        assert ranker.calls == [("", 1000, 4, None)]
        assert recorder.results[-1].total_matched == 2
        assert session.phase is SessionPhase.COMPLETED

    def test_ranker_results_capped(self, scheduler: FakeScheduler, recorder: Recorder) -> None:
        ctl = recorder.controller(scheduler, ranker=self._ranker(10), max_results=4)
        ctl.start("f", BASE, mode=SearchMode.FILES)
        scheduler.advance(0)
        assert recorder.results[-1].total_matched == 4
        assert recorder.results[-1].truncated

    def test_ranker_failure_is_a_notice(self, scheduler: FakeScheduler, recorder: Recorder) -> None:
        def broken(query: str, cap: int, concurrency: int, pinned: str | None) -> list[Match]:
            raise RuntimeError("index unavailable")

        ctl = recorder.controller(scheduler, ranker=broken)
        session = ctl.start("f", BASE, mode=SearchMode.FILES)
        scheduler.advance(0)
        assert session.phase is SessionPhase.ERRORED
        assert recorder.results == [Outcome.empty()]
        assert recorder.notices[0].message == "Ranking failed: index unavailable"

    def test_files_mode_requires_ranker(self, scheduler: FakeScheduler, recorder: Recorder) -> None:
        ctl = recorder.controller(scheduler)
        with pytest.raises(ValueError):
            ctl.start("f", BASE, mode=SearchMode.FILES)


@pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")
class TestRealRipgrep:
    """End to end against the installed rg."""

    @pytest.mark.asyncio
    async def test_finds_matches(self, tmp_path: Any, recorder: Recorder) -> None:
        import asyncio

        (tmp_path / "a.txt").write_text("alpha\nneedle here\n")
        (tmp_path / "b.txt").write_text("nothing\n")
        ctl = recorder.controller(AsyncioScheduler(), debounce_ms=0, throttle_ms=0)
        session = ctl.start("needle", str(tmp_path))
        for _ in range(200):
            if not session.is_live:
                break
            await asyncio.sleep(0.01)
        assert session.phase is SessionPhase.COMPLETED
        outcome = recorder.results[-1]
        assert outcome.total_matched == 1
        match = outcome.matches[0]
        assert match.relative_path == "a.txt"
        assert (match.line, match.column) == (2, 1)
        assert match.content == "needle here"
