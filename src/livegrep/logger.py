"""Rolling file logger with line-count rotation and ZIP archival.

The TUI owns the terminal, so nothing is logged to stderr. Records go to
``~/.cache/livegrep/logs/livegrep.log`` in a compact one-line format with
keyword context appended as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

LOG_DIR = Path.home() / ".cache" / "livegrep" / "logs"
LOG_STEM = "livegrep"
LEVEL_ENV_VAR = "LIVEGREP_LOG_LEVEL"

MAX_LINES = 2000
BACKUP_COUNT = 5

# LogRecord attributes that are never treated as extra context
RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "taskName", "message",
})


class CompactFormatter(logging.Formatter):
    """Format entries as: yyMMdd-HHMMSS.mmm L PPPP TTTT module__ message [key=value...]"""

    LEVEL_MAP: ClassVar[dict[str, str]] = {
        "CRITICAL": "C",
        "ERROR": "E",
        "WARNING": "W",
        "INFO": "I",
        "DEBUG": "D",
    }

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created)
        ts = stamp.strftime("%y%m%d-%H%M%S") + f".{int(record.msecs):03d}"
        level = self.LEVEL_MAP.get(record.levelname, "?")
        pid = f"{os.getpid() & 0xFFFF:04X}"
        tid = f"{(threading.current_thread().ident or 0) & 0xFFFF:04X}"
        module = record.module[:8].ljust(8)

        parts = [f"{ts} {level} {pid} {tid} {module} {record.getMessage()}"]
        for key, value in record.__dict__.items():
            if key in RESERVED_ATTRS or key.startswith("_"):
                continue
            if isinstance(value, str) and (" " in value or not value):
                parts.append(f"{key}={value!r}")
            else:
                parts.append(f"{key}={value}")
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class LineCountHandler(logging.FileHandler):
    """File handler rotating every ``max_lines`` records and zipping full backup windows."""

    def __init__(
        self,
        log_dir: Path,
        stem: str = LOG_STEM,
        max_lines: int = MAX_LINES,
        backup_count: int = BACKUP_COUNT,
    ) -> None:
        self.log_dir = log_dir
        self.archive_dir = log_dir / "archive"
        self.stem = stem
        self.max_lines = max_lines
        self.backup_count = backup_count

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

        self.base_path = log_dir / f"{stem}.log"
        self.line_count = self._count_existing_lines(self.base_path)
        super().__init__(self.base_path, mode="a", encoding="utf-8")

    def _backup(self, index: int) -> Path:
        return self.log_dir / f"{self.stem}.{index}.log"

    @staticmethod
    def _count_existing_lines(path: Path) -> int:
        if not path.exists():
            return 0
        with open(path, "rb") as f:
            return sum(1 for _ in f)

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()
        self.line_count += 1
        if self.line_count >= self.max_lines:
            self._rotate()

    def _rotate(self) -> None:
        """Shift backups up by one, archiving first when the window is full."""
        self.close()

        if self._backup(self.backup_count).exists():
            self._archive()

        for i in range(self.backup_count - 1, 0, -1):
            src = self._backup(i)
            if src.exists():
                src.rename(self._backup(i + 1))

        if self.base_path.exists():
            self.base_path.rename(self._backup(1))

        self.line_count = 0
        self.stream = self._open()

    def _archive(self) -> None:
        timestamp = datetime.now().strftime("%y%m%d-%H%M%S")
        zip_path = self.archive_dir / f"{self.stem}-{timestamp}.zip"
        backups = [self._backup(i) for i in range(1, self.backup_count + 1)]
        try:
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
                for backup in backups:
                    if backup.exists():
                        zf.write(backup, backup.name)
            # Backups are removed only once the archive is written
            for backup in backups:
                if backup.exists():
                    backup.unlink()
        except OSError as e:
            print(f"Log archive failed: {e}", file=sys.stderr)


class AppLogger:
    """Wrapper around logging.Logger that takes keyword context."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def level(self) -> int:
        return self._logger.level

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._logger.debug(msg, extra=kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._logger.info(msg, extra=kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._logger.warning(msg, extra=kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._logger.error(msg, extra=kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        self._logger.exception(msg, extra=kwargs)


_logger: AppLogger | None = None


def _level_from_env(default: int) -> int:
    name = os.environ.get(LEVEL_ENV_VAR, "").upper()
    value = logging.getLevelName(name) if name else default
    return value if isinstance(value, int) else default


def setup_logger(level: int = logging.INFO, log_dir: Path | None = None) -> AppLogger:
    """Create and configure the application logger.

    Returns the same instance on repeated calls. ``LIVEGREP_LOG_LEVEL``
    overrides ``level``.
    """
    global _logger

    if _logger is not None:
        return _logger

    base_logger = logging.getLogger(LOG_STEM)
    base_logger.setLevel(_level_from_env(level))
    base_logger.propagate = False

    if not base_logger.handlers:
        handler = LineCountHandler(log_dir or LOG_DIR)
        handler.setFormatter(CompactFormatter())
        base_logger.addHandler(handler)

    _logger = AppLogger(base_logger)
    return _logger


def get_logger() -> AppLogger:
    """Get the configured logger, setting it up if needed."""
    if _logger is None:
        return setup_logger()
    return _logger
