"""Project root discovery and the external dependency report."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from livegrep.backend import Backend

VERSION_TIMEOUT_S = 5


@dataclass(frozen=True)
class HealthItem:
    """One line of the ``--health`` report."""

    name: str
    ok: bool
    detail: str
    required: bool = True


def find_git_root(path: Path) -> Path | None:
    """Return the top level of the git repository containing ``path``, if any."""
    if shutil.which("git") is None:
        return None
    try:
        proc = subprocess.run(
            ["git", "-C", str(path), "rev-parse", "--show-toplevel"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    top_level = proc.stdout.strip()
    return Path(top_level).resolve() if top_level else None


def _version(executable: str) -> str:
    try:
        proc = subprocess.run(
            [executable, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=VERSION_TIMEOUT_S,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return "version unknown"
    lines = proc.stdout.splitlines()
    return lines[0].strip() if lines else "version unknown"


def health_check(backend: Backend) -> list[HealthItem]:
    """Check the external tools livegrep relies on."""
    items: list[HealthItem] = []
    rg = backend.locate()
    if rg is None:
        items.append(
            HealthItem(backend.executable, False, "not found on PATH; install ripgrep for content search")
        )
    else:
        items.append(HealthItem(backend.executable, True, f"{rg} ({_version(rg)})"))

    git = shutil.which("git")
    if git is None:
        items.append(HealthItem("git", False, "not found; --git-root is unavailable", required=False))
    else:
        items.append(HealthItem("git", True, f"{git} ({_version(git)})", required=False))
    return items
