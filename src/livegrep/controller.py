"""Ownership of "the current search".

``SessionController`` is the only place that creates sessions. Each call to
``start`` bumps the generation, cancels the live session and installs the new
one in the same synchronous call, so no loop callback can ever see two live
sessions. Sessions ask ``is_current`` before every delivery.
"""

from __future__ import annotations

import os
from collections.abc import Callable

from livegrep.backend import Backend
from livegrep.logger import get_logger
from livegrep.models import Notice, Outcome, Query, SearchMode
from livegrep.scheduler import Scheduler
from livegrep.session import GrepSession, Ranker, RankingSession, SearchSession
from livegrep.settings import SettingsDict, default_settings


class SessionController:
    """Owns at most one live ``SearchSession`` and the generation counter."""

    def __init__(
        self,
        scheduler: Scheduler,
        on_results: Callable[[Outcome], None],
        on_notice: Callable[[Notice], None] | None = None,
        settings: SettingsDict | None = None,
        backend: Backend | None = None,
        ranker: Ranker | None = None,
    ) -> None:
        self.settings = settings or default_settings()
        self.scheduler = scheduler
        self.backend = backend or Backend.from_settings(self.settings)
        self.ranker = ranker
        self._on_results = on_results
        self._on_notice = on_notice
        self._generation = 0
        self._latest_text = ""
        self._current: SearchSession | None = None
        self._reported: set[str] = set()
        self.log = get_logger()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current(self) -> SearchSession | None:
        return self._current

    def start(
        self,
        text: str,
        base_path: str | None = None,
        mode: SearchMode = SearchMode.GREP,
        pinned_path: str | None = None,
    ) -> SearchSession:
        """Supersede the current session with a new query and start it."""
        self._generation += 1
        query = Query(
            text=text,
            base_path=os.path.abspath(base_path or os.getcwd()),
            generation_id=self._generation,
            mode=mode,
            pinned_path=pinned_path,
        )
        self._latest_text = text

        previous, self._current = self._current, None
        if previous is not None:
            previous.cancel()

        session = self._create_session(query)
        self._current = session
        self.log.debug("Query started", generation=query.generation_id, mode=mode.value, text=text)
        session.start()
        return session

    def cancel(self) -> None:
        """Cancel the current session, if any. Used when the picker closes."""
        session, self._current = self._current, None
        # Bump so late callbacks from anything already scheduled fail the gate
        self._generation += 1
        if session is not None:
            session.cancel()

    def is_current(self, query: Query) -> bool:
        return query.generation_id == self._generation and query.text == self._latest_text

    def _create_session(self, query: Query) -> SearchSession:
        s = self.settings
        common = {
            "scheduler": self.scheduler,
            "on_result": self._deliver,
            "on_notice": self._notice,
            "is_current": self.is_current,
            "throttle_ms": s["throttle_ms"],
            "max_results": s["max_results"],
        }
        if query.mode is SearchMode.FILES:
            if self.ranker is None:
                raise ValueError("files mode needs a ranker")
            return RankingSession(
                query,
                ranker=self.ranker,
                concurrency=s["ranking_concurrency"],
                debounce_ms=s["ranking_debounce_ms"],
                **common,
            )
        return GrepSession(query, backend=self.backend, debounce_ms=s["debounce_ms"], **common)

    def _deliver(self, outcome: Outcome) -> None:
        self._on_results(outcome)

    def _notice(self, notice: Notice) -> None:
        # Configuration problems are reported once per controller
        if notice.level == "error":
            if notice.message in self._reported:
                return
            self._reported.add(notice.message)
        if self._on_notice is not None:
            self._on_notice(notice)
