"""Find the commit that introduced a symbol into a file.

History is walked oldest to newest over the commit graph. For every commit in
which the file contains the symbol we track the start of its *presence run*:
the earliest commit reachable through an unbroken chain of ancestors that all
contain the symbol. The introduction is the run start of HEAD. A removal
breaks the chain, so a later reintroduction starts a new run and resets the
introduction date. A symbol missing at HEAD (for example a file that was never
committed) has no introduction.
"""

from __future__ import annotations

import logging
from pathlib import Path
from time import monotonic

from flag_exorcist.errors import HistoryReadError, HistoryTimeout
from flag_exorcist.history import HistorySource
from flag_exorcist.models import Commit, Found, Introduction, NotFound

logger = logging.getLogger(__name__)


class HistoryResolver:
    def __init__(
        self,
        history: HistorySource,
        max_commits: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self.history = history
        self.max_commits = max_commits
        self.timeout = timeout

    def relative_path(self, path: str | Path) -> str | None:
        """Strip the repository root from ``path``; None if it lies outside."""
        candidate = Path(path)
        if not candidate.is_absolute():
            return candidate.as_posix()
        root = self.history.root
        try:
            return candidate.resolve().relative_to(root).as_posix()
        except ValueError:
            pass
        try:
            return candidate.relative_to(root).as_posix()
        except ValueError:
            return None

    def resolve(self, symbol: str, path: str | Path) -> Introduction:
        rel_path = self.relative_path(path)
        if rel_path is None:
            logger.debug("%s is outside repository %s", path, self.history.root)
            return NotFound(symbol, f"{path} is outside the repository")

        deadline = monotonic() + self.timeout if self.timeout else None
        try:
            commits = self.history.commits(self.max_commits, timeout=_remaining(deadline))
            blobs = self.history.blob_ids(commits, rel_path, timeout=_remaining(deadline))
            head = self.history.head
            if not commits or head is None:
                return NotFound(symbol, "repository has no commits")
            run_start = self._walk(symbol, commits, blobs, deadline)
        except HistoryTimeout:
            logger.warning(
                "Timed out after %.1fs resolving %s in %s", self.timeout, symbol, rel_path
            )
            return NotFound(symbol, "timed out walking history")
        except HistoryReadError as exc:
            logger.warning("Cannot read history of %s: %s", rel_path, exc)
            return NotFound(symbol, str(exc))

        start = run_start.get(head)
        if start is None:
            logger.debug("%s not present in %s at HEAD", symbol, rel_path)
            return NotFound(symbol, f"not present in {rel_path} at HEAD")
        logger.debug(
            "%s introduced in %s by %s on %s",
            symbol,
            rel_path,
            start.sha[:12],
            start.authored_at.isoformat(),
        )
        return Found(symbol=symbol, commit=start.sha, introduced_at=start.authored_at)

    def _walk(
        self,
        symbol: str,
        commits: list[Commit],
        blobs: dict[str, str | None],
        deadline: float | None,
    ) -> dict[str, Commit | None]:
        run_start: dict[str, Commit | None] = {}
        contains: dict[str, bool] = {}
        for commit in commits:
            oid = blobs.get(commit.sha)
            if oid is None:
                run_start[commit.sha] = None
                continue
            if oid not in contains:
                contains[oid] = self._blob_contains(oid, symbol, commit, _remaining(deadline))
            if not contains[oid]:
                run_start[commit.sha] = None
                continue
            starts = [
                start
                for start in (run_start.get(parent) for parent in commit.parents)
                if start is not None
            ]
            if starts:
                run_start[commit.sha] = min(starts, key=lambda c: c.authored_at)
            else:
                run_start[commit.sha] = commit
        return run_start

    def _blob_contains(
        self, oid: str, symbol: str, commit: Commit, timeout: float | None
    ) -> bool:
        try:
            return symbol in self.history.read_blob(oid, timeout=timeout)
        except HistoryTimeout:
            raise
        except HistoryReadError as exc:
            logger.warning("Cannot read blob %s in commit %s: %s", oid, commit.sha[:12], exc)
            return False


def _remaining(deadline: float | None) -> float | None:
    """Seconds left before ``deadline``; raises ``HistoryTimeout`` once it has passed."""
    if deadline is None:
        return None
    remaining = deadline - monotonic()
    if remaining <= 0:
        raise HistoryTimeout("deadline passed")
    return remaining
