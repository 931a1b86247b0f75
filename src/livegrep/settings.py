"""Settings persistence for livegrep."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TypedDict

from livegrep.logger import get_logger

CACHE_DIR = Path.home() / ".cache" / "livegrep"
SETTINGS_PATH = CACHE_DIR / "settings.json"

PROMPT_POSITIONS = ("top", "bottom")

AVAILABLE_THEMES = [
    "textual-dark",
    "textual-light",
    "nord",
    "gruvbox",
    "tokyo-night",
    "dracula",
    "monokai",
    "solarized-light",
]


class SettingsDict(TypedDict):
    """Settings schema."""

    debounce_ms: int
    throttle_ms: int
    max_results: int
    extra_flags: list[str]
    rg_args: list[str]
    ranking_debounce_ms: int
    ranking_concurrency: int
    prompt_position: str
    preview: bool
    theme: str


def default_settings() -> SettingsDict:
    return {
        "debounce_ms": 120,
        "throttle_ms": 80,
        "max_results": 1000,
        "extra_flags": [],
        "rg_args": ["--vimgrep", "--no-heading", "--hidden"],
        "ranking_debounce_ms": 0,
        "ranking_concurrency": 4,
        "prompt_position": "top",
        "preview": True,
        "theme": "textual-dark",
    }


def _valid(key: str, value: Any) -> bool:
    if key in ("debounce_ms", "throttle_ms", "ranking_debounce_ms"):
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0
    if key in ("max_results", "ranking_concurrency"):
        return isinstance(value, int) and not isinstance(value, bool) and value >= 1
    if key in ("extra_flags", "rg_args"):
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    if key == "prompt_position":
        return value in PROMPT_POSITIONS
    if key == "preview":
        return isinstance(value, bool)
    if key == "theme":
        return value in AVAILABLE_THEMES
    return False


def merge_settings(base: SettingsDict, overrides: dict[str, Any]) -> SettingsDict:
    """Return ``base`` updated with every valid, known key from ``overrides``.

    Unknown keys and invalid values are ignored (and logged).
    """
    merged = dict(base)
    for key, value in overrides.items():
        if key not in base:
            continue
        if value is None:
            continue
        if _valid(key, value):
            merged[key] = value
        else:
            get_logger().warning("Ignoring invalid setting", key=key, value=repr(value))
    return merged  # type: ignore[return-value]


def load_settings() -> SettingsDict:
    """Load settings from the cache file. Returns defaults if missing or corrupted."""
    defaults = default_settings()
    if not SETTINGS_PATH.exists():
        return defaults

    try:
        with open(SETTINGS_PATH, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return defaults

    if not isinstance(data, dict):
        return defaults
    return merge_settings(defaults, data)


def save_settings(settings: SettingsDict) -> None:
    """Save settings to the cache file."""
    CACHE_DIR.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_PATH, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
