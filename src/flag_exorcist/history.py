"""Read-only access to git history through the ``git`` command line tool."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from flag_exorcist.errors import HistoryReadError, HistoryTimeout, RepositoryError
from flag_exorcist.models import Commit

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"


class HistorySource(Protocol):
    @property
    def root(self) -> Path: ...

    @property
    def head(self) -> str | None: ...

    def commits(
        self, max_count: int | None = None, timeout: float | None = None
    ) -> list[Commit]:
        """Commits reachable from HEAD, parents before children.

        Every read raises ``HistoryTimeout`` when it runs past ``timeout`` seconds.
        """
        ...

    def blob_ids(
        self, commits: Sequence[Commit], path: str, timeout: float | None = None
    ) -> dict[str, str | None]:
        """Blob id of ``path`` in each commit, None where the file is absent."""
        ...

    def read_blob(self, oid: str, timeout: float | None = None) -> str: ...


class GitHistory:
    def __init__(self, root: Path, head: str | None) -> None:
        self._root = root
        self._head = head
        self._lock = threading.Lock()
        self._commits: dict[int | None, list[Commit]] = {}

    @classmethod
    def open(cls, path: Path | str) -> GitHistory:
        path = Path(path)
        if not path.is_dir():
            raise RepositoryError(f"repository path is not a directory: {path}")
        try:
            top = _git(path, "rev-parse", "--show-toplevel").decode().strip()
        except HistoryReadError as exc:
            raise RepositoryError(f"cannot open git repository at {path}: {exc}") from exc
        root = Path(top).resolve()
        head = _resolve_head(root)
        if head is None:
            logger.warning("Repository %s has no commits yet", root)
        logger.debug("Opened repository %s at %s", root, head)
        return cls(root, head)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def head(self) -> str | None:
        return self._head

    def commits(
        self, max_count: int | None = None, timeout: float | None = None
    ) -> list[Commit]:
        if self._head is None:
            return []
        with self._lock:
            cached = self._commits.get(max_count)
            if cached is None:
                cached = self._load_commits(max_count, timeout)
                self._commits[max_count] = cached
            return cached

    def blob_ids(
        self, commits: Sequence[Commit], path: str, timeout: float | None = None
    ) -> dict[str, str | None]:
        if not commits:
            return {}
        request = "".join(f"{commit.sha}:{path}\n" for commit in commits)
        output = _git(
            self._root, "cat-file", "--batch-check", input=request.encode(), timeout=timeout
        )
        lines = output.decode("utf-8", errors="replace").splitlines()
        if len(lines) != len(commits):
            raise HistoryReadError(
                f"expected {len(commits)} batch-check lines for {path}, got {len(lines)}"
            )
        blobs: dict[str, str | None] = {}
        for commit, line in zip(commits, lines):
            blobs[commit.sha] = _parse_batch_check(line)
        return blobs

    def read_blob(self, oid: str, timeout: float | None = None) -> str:
        data = _git(self._root, "cat-file", "blob", oid, timeout=timeout)
        return data.decode("utf-8", errors="replace")

    def _load_commits(self, max_count: int | None, timeout: float | None) -> list[Commit]:
        args = [
            "log",
            "--topo-order",
            "--reverse",
            f"--format=%H{_FIELD_SEP}%P{_FIELD_SEP}%at",
        ]
        if max_count is not None:
            args.append(f"--max-count={max_count}")
        args.append(self._head or "HEAD")
        output = _git(self._root, *args, timeout=timeout).decode("utf-8", errors="replace")
        commits = [_parse_commit(line) for line in output.splitlines() if line.strip()]
        logger.debug("Loaded %d commit(s) from %s", len(commits), self._root)
        return commits


def _git(
    root: Path, *args: str, input: bytes | None = None, timeout: float | None = None
) -> bytes:
    try:
        proc = subprocess.run(
            ["git", "-C", str(root), *args],
            input=input,
            capture_output=True,
            check=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise HistoryTimeout(f"git {args[0]} did not finish within {timeout:.1f}s") from exc
    except FileNotFoundError as exc:
        raise HistoryReadError("git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode("utf-8", errors="replace").strip() if exc.stderr else ""
        raise HistoryReadError(f"git {args[0]} failed: {stderr or exc.returncode}") from exc
    return proc.stdout


def _resolve_head(root: Path) -> str | None:
    proc = subprocess.run(
        ["git", "-C", str(root), "rev-parse", "--verify", "-q", "HEAD^{commit}"],
        capture_output=True,
        check=False,
    )
    if proc.returncode != 0:
        return None
    return proc.stdout.decode().strip() or None


def _parse_commit(line: str) -> Commit:
    try:
        sha, parents, authored = line.split(_FIELD_SEP)
        timestamp = int(authored)
    except ValueError as exc:
        raise HistoryReadError(f"unexpected git log line: {line!r}") from exc
    return Commit(
        sha=sha,
        parents=tuple(parents.split()),
        authored_at=datetime.fromtimestamp(timestamp, tz=timezone.utc),
    )


def _parse_batch_check(line: str) -> str | None:
    # "<oid> <type> <size>" or "<object> missing"
    if line.endswith(" missing") or line.endswith(" ambiguous"):
        return None
    parts = line.rsplit(" ", 2)
    if len(parts) != 3 or parts[1] != "blob":
        return None
    return parts[0]
