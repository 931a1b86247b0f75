"""Textual TUI front-end for live grep and file search."""

from __future__ import annotations

import atexit
import itertools
import os
import re
import signal
import sys
from typing import TYPE_CHECKING

import pyperclip
from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.css.query import NoMatches
from textual.timer import Timer
from textual.widgets import Footer, Header, Input, Static
from textual.worker import get_current_worker

from livegrep.backend import Backend
from livegrep.controller import SessionController
from livegrep.logger import AppLogger, get_logger
from livegrep.models import Match, Notice, Outcome, SearchMode
from livegrep.presentation import Anchor, PresentationState
from livegrep.ranking import FileIndex
from livegrep.scheduler import AsyncioScheduler, Scheduler
from livegrep.session import Ranker
from livegrep.settings import SettingsDict, load_settings, save_settings

if TYPE_CHECKING:
    from textual.events import Resize

# Preview reads a file, so it waits for the cursor to settle a little longer
PREVIEW_DEBOUNCE_S = 0.1
PREVIEW_CONTEXT_LINES = 40
PREVIEW_MAX_LINE = 400


class ResultsView(Static):
    """Draws the viewport of a ``PresentationState``."""

    def __init__(self, state: PresentationState, **kwargs: object) -> None:
        super().__init__("", **kwargs)  # type: ignore[arg-type]
        self.view_state = state

    def on_resize(self, event: Resize) -> None:
        self.view_state.set_viewport_height(event.size.height)

    def redraw(self, mode: SearchMode) -> None:
        if not self.view_state.items:
            self.update(Text("No results", style="dim"))
            return
        text = Text(no_wrap=True, overflow="ellipsis")
        for row, (index, item) in enumerate(self.view_state.visible_items()):
            if row:
                text.append("\n")
            text.append_text(format_row(item, mode, index == self.view_state.cursor_index))
        self.update(text)


def format_row(item: Match, mode: SearchMode, is_cursor: bool) -> Text:
    """Render one result row."""
    text = Text(style="reverse" if is_cursor else "")
    if mode is SearchMode.GREP and item.line is not None:
        text.append(item.relative_path, style="bold cyan")
        text.append(f":{item.line}:", style="dim")
        text.append((item.content or "").strip())
        return text
    directory, _, name = item.relative_path.rpartition(os.sep)
    if directory:
        text.append(directory + os.sep, style="dim")
    text.append(name or item.name, style="bold")
    return text


def compile_highlight(query: str) -> re.Pattern[str] | None:
    """Pattern used to highlight the query in the preview; literal if not a valid regex."""
    query = query.strip()
    if not query:
        return None
    try:
        return re.compile(query, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(query), re.IGNORECASE)


def highlight(content: str, pattern: re.Pattern[str] | None, base_style: str = "") -> Text:
    """Build a Text with every match of ``pattern`` reversed."""
    text = Text(style=base_style)
    if pattern is None:
        text.append(content)
        return text
    last_end = 0
    for found in pattern.finditer(content):
        if found.start() == found.end():
            continue
        if found.start() > last_end:
            text.append(content[last_end:found.start()])
        text.append(found.group(), style="reverse")
        last_end = found.end()
    if last_end < len(content):
        text.append(content[last_end:])
    return text


def load_preview(item: Match, query: str, context: int = PREVIEW_CONTEXT_LINES) -> Text:
    """Read the lines around a match (or the head of a file) for the preview pane."""
    target = item.line or 1
    start = max(1, target - context // 4) if item.line else 1
    pattern = compile_highlight(query) if item.line else None
    try:
        with open(item.absolute_path, encoding="utf-8", errors="replace") as f:
            lines = list(itertools.islice(f, start - 1, start - 1 + context))
    except OSError as e:
        return Text(f"Cannot preview {item.relative_path}: {e.strerror or e}", style="dim")

    text = Text()
    text.append(f"{item.relative_path}\n\n", style="bold")
    width = len(str(start + len(lines)))
    for offset, line in enumerate(lines):
        number = start + offset
        is_target = item.line is not None and number == target
        text.append(f"{number:>{width}} ", style="bold yellow" if is_target else "dim")
        body = line.rstrip("\r\n")[:PREVIEW_MAX_LINE]
        text.append_text(highlight(body, pattern, "bold" if is_target else ""))
        text.append("\n")
    return text


class LiveGrepApp(App[str | None]):
    """Incremental search over a project tree: file contents or file names."""

    TITLE = "livegrep"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    #main-layout {
        width: 100%;
        height: 1fr;
    }

    #search-container {
        height: auto;
        padding: 0 1;
    }

    #search-input {
        width: 100%;
    }

    #results-container {
        border: solid $primary;
        width: 1fr;
        height: 100%;
    }

    #results-list {
        width: 100%;
        height: 100%;
    }

    #preview-container {
        border: solid $secondary;
        width: 1fr;
        height: 100%;
        scrollbar-size-vertical: 1;
    }

    #preview-container.hidden {
        display: none;
    }

    #preview-content {
        padding: 0 1;
    }

    #status-line {
        height: 1;
        padding: 0 2;
        background: $surface-darken-1;
        color: $text-muted;
    }
    """

    BINDINGS = [  # noqa: RUF012
        Binding("escape", "quit", "Quit"),
        Binding("down", "cursor_down", "Down", show=False, priority=True),
        Binding("up", "cursor_up", "Up", show=False, priority=True),
        Binding("ctrl+n", "cursor_down", "Down", show=False, priority=True),
        Binding("ctrl+p", "cursor_up", "Up", show=False, priority=True),
        Binding("pagedown", "page_down", "Page down", show=False, priority=True),
        Binding("pageup", "page_up", "Page up", show=False, priority=True),
        Binding("ctrl+y", "copy_location", "Copy", priority=True),
        Binding("ctrl+g", "toggle_mode", "Grep/Files", priority=True),
        Binding("ctrl+o", "toggle_preview", "Preview", priority=True),
        Binding("ctrl+d", "scroll_preview_down", "Preview down", show=False, priority=True),
        Binding("ctrl+u", "scroll_preview_up", "Preview up", show=False, priority=True),
    ]

    def __init__(
        self,
        base_path: str | None = None,
        initial_query: str = "",
        mode: SearchMode = SearchMode.GREP,
        settings: SettingsDict | None = None,
        backend: Backend | None = None,
        ranker: Ranker | None = None,
        scheduler: Scheduler | None = None,
        pinned_path: str | None = None,
    ) -> None:
        super().__init__()
        self.base_path = os.path.abspath(base_path or os.getcwd())
        self.initial_query = initial_query
        self.search_mode = mode
        self.pinned_path = pinned_path
        self.app_settings = settings or load_settings()
        self.show_preview = self.app_settings["preview"]
        self.outcome = Outcome.empty()
        self._preview_timer: Timer | None = None
        self._app_logger: AppLogger | None = None

        # Only the built-in index needs scanning; an injected ranker is ready
        self.file_index = FileIndex(self.base_path) if ranker is None else None

        scheduler = scheduler or AsyncioScheduler()
        self.view_state = PresentationState(
            anchor=Anchor.for_prompt(self.app_settings["prompt_position"]),
            scheduler=scheduler,
            on_render=self._render_results,
        )
        self.controller = SessionController(
            scheduler,
            on_results=self._on_results,
            on_notice=self._on_notice,
            settings=self.app_settings,
            backend=backend,
            ranker=ranker or self.file_index,
        )
        self.theme = self.app_settings["theme"]

    def compose(self) -> ComposeResult:
        prompt = Vertical(id="search-container")
        yield Header(show_clock=False)
        if self.app_settings["prompt_position"] == "top":
            with prompt:
                yield Input(value=self.initial_query, placeholder=self._placeholder(), id="search-input")
        with Horizontal(id="main-layout"):
            with Vertical(id="results-container"):
                yield ResultsView(self.view_state, id="results-list")
            with VerticalScroll(id="preview-container"):
                yield Static("", id="preview-content")
        yield Static("", id="status-line")
        if self.app_settings["prompt_position"] == "bottom":
            with prompt:
                yield Input(value=self.initial_query, placeholder=self._placeholder(), id="search-input")
        yield Footer()

    def on_mount(self) -> None:
        self._app_logger = get_logger()
        self._app_logger.info("Application started", base=self.base_path, mode=self.search_mode.value)
        self.query_one("#preview-container").set_class(not self.show_preview, "hidden")
        self.query_one("#search-input", Input).focus()
        if self.file_index is not None:
            self._index_files()
        self._search(self.initial_query)

    def on_unmount(self) -> None:
        self.controller.cancel()

    @work(thread=True, exclusive=True, group="index")
    def _index_files(self) -> None:
        """Walk the project tree in a background thread."""
        assert self.file_index is not None
        worker = get_current_worker()
        count = self.file_index.scan()
        if not worker.is_cancelled:
            self.call_from_thread(self._on_index_ready, count)

    def _on_index_ready(self, count: int) -> None:
        if self._app_logger:
            self._app_logger.debug("File index ready", files=count)
        if self.search_mode is SearchMode.FILES:
            # Results delivered before the scan finished were empty
            self._search(self.query_one("#search-input", Input).value)

    def _placeholder(self) -> str:
        if self.search_mode is SearchMode.GREP:
            return f"Grep in {self.base_path}"
        return f"Find files in {self.base_path}"

    def _search(self, query: str) -> None:
        self.controller.start(query, self.base_path, mode=self.search_mode, pinned_path=self.pinned_path)
        self._update_status()

    @on(Input.Changed, "#search-input")
    def on_search_changed(self, event: Input.Changed) -> None:
        """Each keystroke supersedes the running search; the session debounces."""
        self._search(event.value)

    @on(Input.Submitted, "#search-input")
    def on_search_submitted(self, event: Input.Submitted) -> None:
        self.action_select()

    def _on_results(self, outcome: Outcome) -> None:
        self.outcome = outcome
        self.view_state.replace(outcome.matches)

    def _on_notice(self, notice: Notice) -> None:
        self.notify(notice.message, severity=notice.severity, timeout=3)  # type: ignore[arg-type]

    def _render_results(self, state: PresentationState) -> None:
        try:
            results = self.query_one("#results-list", ResultsView)
        except NoMatches:
            return  # torn down before the queued render fired
        results.redraw(self.search_mode)
        self._update_status()
        self._schedule_preview()

    def _update_status(self) -> None:
        count = f"{self.outcome.total_matched}{'+' if self.outcome.truncated else ''}"
        session = self.controller.current
        busy = " searching..." if session is not None and session.is_live else ""
        position = f"{self.view_state.cursor_index}/{len(self.view_state)}" if len(self.view_state) else "0/0"
        status = f"{self.search_mode.value}  {count} matches  [{position}]{busy}"
        self.query_one("#status-line", Static).update(Text(status))

    def _schedule_preview(self) -> None:
        if self._preview_timer:
            self._preview_timer.stop()
        self._preview_timer = self.set_timer(PREVIEW_DEBOUNCE_S, self._update_preview)

    def _update_preview(self) -> None:
        self._preview_timer = None
        if not self.show_preview:
            return
        preview = self.query_one("#preview-content", Static)
        item = self.view_state.select()
        if item is None:
            preview.update(Text("No selection", style="dim"))
            return
        query = self.query_one("#search-input", Input).value
        preview.update(load_preview(item, query if self.search_mode is SearchMode.GREP else ""))

    def action_cursor_down(self) -> None:
        self.view_state.move_cursor(1)

    def action_cursor_up(self) -> None:
        self.view_state.move_cursor(-1)

    def action_page_down(self) -> None:
        self.view_state.move_cursor(self.view_state.viewport_height)

    def action_page_up(self) -> None:
        self.view_state.move_cursor(-self.view_state.viewport_height)

    def action_select(self) -> None:
        """Exit with the selected location."""
        item = self.view_state.select()
        if item is None:
            return
        if self._app_logger:
            self._app_logger.info("Selected", location=item.location)
        self.exit(item.location)

    def action_copy_location(self) -> None:
        """Copy ``path:line:col`` of the selection to the clipboard."""
        item = self.view_state.select()
        if item is None:
            return
        try:
            pyperclip.copy(item.location)
            self.notify(f"Copied {item.location}", timeout=1)
        except pyperclip.PyperclipException:
            self.notify(f"Clipboard unavailable: {item.location}", severity="warning", timeout=3)

    def action_toggle_mode(self) -> None:
        """Switch between content grep and filename search, re-running the query."""
        self.search_mode = SearchMode.FILES if self.search_mode is SearchMode.GREP else SearchMode.GREP
        search_input = self.query_one("#search-input", Input)
        search_input.placeholder = self._placeholder()
        self._search(search_input.value)

    def action_toggle_preview(self) -> None:
        """Show or hide the preview pane and remember the choice."""
        self.show_preview = not self.show_preview
        self.query_one("#preview-container").set_class(not self.show_preview, "hidden")
        if self.show_preview:
            self._update_preview()
        # Reload so command-line overrides are not written back
        stored = load_settings()
        stored["preview"] = self.show_preview
        save_settings(stored)

    def action_scroll_preview_down(self) -> None:
        self._scroll_preview(1)

    def action_scroll_preview_up(self) -> None:
        self._scroll_preview(-1)

    def _scroll_preview(self, direction: int) -> None:
        """Scroll the preview by half its height without moving focus."""
        if not self.show_preview:
            return
        container = self.query_one("#preview-container", VerticalScroll)
        container.scroll_relative(y=direction * max(1, container.size.height // 2), animate=False)


def reset_terminal() -> None:
    """Restore terminal modes the TUI may have left behind."""
    sys.stdout.write(
        "\x1b[?1049l"  # leave alternate screen
        "\x1b[?1000l\x1b[?1002l\x1b[?1003l\x1b[?1006l"  # mouse tracking off
        "\x1b[?25h"  # show cursor
        "\x1b[0m"
    )
    sys.stdout.flush()


def run_app(
    base_path: str | None = None,
    initial_query: str = "",
    mode: SearchMode = SearchMode.GREP,
    settings: SettingsDict | None = None,
    pinned_path: str | None = None,
) -> str | None:
    """Run the TUI and return the chosen location, if any."""
    atexit.register(reset_terminal)

    def signal_handler(signum: int, frame: object) -> None:
        reset_terminal()
        sys.exit(128 + signum)

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app = LiveGrepApp(
            base_path=base_path,
            initial_query=initial_query,
            mode=mode,
            settings=settings,
            pinned_path=pinned_path,
        )
        return app.run()
    finally:
        reset_terminal()
