"""Built-in filename ranker used when no native engine is plugged in.

``FileIndex`` satisfies the ranking call contract
``search(query, cap, concurrency, pinned_path) -> matches`` so it can be handed
to ``SessionController`` anywhere a native ranking engine would be.
"""

from __future__ import annotations

import heapq
import os

from livegrep.logger import get_logger
from livegrep.models import Match

SKIP_DIRS = frozenset({".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv"})
# Keeps the file the user is already in below equally good candidates
PINNED_PENALTY = 1_000
BOUNDARY_CHARS = "/_-. "


def fuzzy_score(query: str, candidate: str) -> int | None:
    """Score ``candidate`` as a case-insensitive subsequence match of ``query``.

    Returns None when ``query`` is not a subsequence. Consecutive runs, word
    boundaries and hits inside the basename score higher; gaps and long paths
    score lower.
    """
    if not query:
        return 0
    needle = query.casefold()
    hay = candidate.casefold()
    name_start = max(hay.rfind("/"), hay.rfind("\\")) + 1

    score = 0
    prev = -1
    run = 0
    for ch in needle:
        if ch == " ":
            continue
        idx = hay.find(ch, prev + 1)
        if idx < 0:
            return None
        if idx == prev + 1:
            run += 1
            score += 20 + min(16, run * 4)
        else:
            run = 0
            score -= min(40, (idx - prev - 1) * 2)
        if idx == 0 or hay[idx - 1] in BOUNDARY_CHARS:
            score += 35
        if idx >= name_start:
            score += 10
        prev = idx

    score -= len(hay) // 5
    return score


class FileIndex:
    """In-memory list of project files.

    ``scan`` walks the tree and may be slow on large projects, so the app runs
    it in a worker thread. Until it has completed, ``search`` returns nothing.
    """

    def __init__(self, root: str, show_hidden: bool = False) -> None:
        self.root = os.path.abspath(root)
        self.show_hidden = show_hidden
        self._labels: list[str] | None = None

    @property
    def ready(self) -> bool:
        return self._labels is not None

    @property
    def labels(self) -> list[str]:
        return self._labels or []

    def scan(self) -> int:
        """(Re)walk the tree. Returns the number of files indexed."""
        labels: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in SKIP_DIRS and (self.show_hidden or not d.startswith("."))
            )
            rel_dir = os.path.relpath(dirpath, self.root)
            for filename in sorted(filenames):
                if not self.show_hidden and filename.startswith("."):
                    continue
                labels.append(filename if rel_dir == "." else os.path.join(rel_dir, filename))
        self._labels = labels
        get_logger().info("Indexed files", root=self.root, files=len(labels))
        return len(labels)

    def search(
        self,
        query: str,
        cap: int,
        concurrency: int = 1,
        pinned_path: str | None = None,
    ) -> list[Match]:
        """Return up to ``cap`` files best matching ``query``.

        ``concurrency`` is a hint for native engines; this scorer runs inline.
        """
        query = query.strip()
        pinned = os.path.abspath(pinned_path) if pinned_path else None
        scored: list[tuple[int, str]] = []
        for label in self.labels:
            score = fuzzy_score(query, label)
            if score is None:
                continue
            if pinned is not None and os.path.join(self.root, label) == pinned:
                score -= PINNED_PENALTY
            scored.append((-score, label))
        best = heapq.nsmallest(max(1, cap), scored)
        return [Match.for_file(os.path.join(self.root, label), self.root) for _, label in best]

    __call__ = search
