from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from flag_exorcist.cache import IntroductionCache
from flag_exorcist.config import AuditConfig
from flag_exorcist.history import HistorySource
from flag_exorcist.models import (
    DECLARATION,
    USAGE,
    AnalysisUnit,
    Diagnostic,
    Introduction,
    Occurrence,
)
from flag_exorcist.policy import evaluate
from flag_exorcist.report import Reporter
from flag_exorcist.resolver import HistoryResolver
from flag_exorcist.scanner import scan_unit

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = [
    ".git/**",
    ".hg/**",
    ".venv/**",
    "venv/**",
    ".tox/**",
    ".nox/**",
    "__pycache__/**",
    ".pytest_cache/**",
    ".mypy_cache/**",
    ".ruff_cache/**",
    "build/**",
    "dist/**",
    "*.egg-info/**",
]

# Skipped wherever they appear; the globs above only match from the root.
SKIPPED_DIR_NAMES = frozenset(
    {
        ".git",
        ".hg",
        ".venv",
        ".tox",
        ".nox",
        "__pycache__",
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
    }
)


def discover_units(
    root: Path,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> list[AnalysisUnit]:
    """Group the Python files under ``root`` into one unit per directory."""
    root = root.resolve()
    include = list(include)
    exclude_patterns = DEFAULT_EXCLUDES + list(exclude)
    grouped: dict[str, list[Path]] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        if rel_dir != "." and (
            _matches(rel_dir + "/", exclude_patterns)
            or Path(dirpath).name in SKIPPED_DIR_NAMES
        ):
            dirnames[:] = []
            continue
        dirnames.sort()
        for name in filenames:
            if not name.endswith(".py"):
                continue
            full_path = Path(dirpath) / name
            rel_path = full_path.relative_to(root).as_posix()
            if _matches(rel_path, exclude_patterns):
                continue
            if include and not _matches(rel_path, include):
                continue
            grouped.setdefault(rel_dir, []).append(full_path)
    return [
        AnalysisUnit(
            name=rel_dir,
            root=root,
            files=tuple(sorted(files, key=lambda p: p.as_posix())),
        )
        for rel_dir, files in sorted(grouped.items())
    ]


def _matches(path: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(path, pattern) for pattern in patterns)


class Auditor:
    """Runs the scan, resolve and policy pipeline over analysis units.

    One auditor is one run: ``now`` is fixed when it is created, and the
    introduction cache and the declaration registry live until ``close()``.
    ``audit_unit`` may be called from several threads at once.
    """

    def __init__(
        self,
        config: AuditConfig,
        history: HistorySource,
        reporter: Reporter,
        now: datetime | None = None,
    ) -> None:
        self.config = config
        self.reporter = reporter
        self.now = now if now is not None else datetime.now(timezone.utc)
        self.resolver = HistoryResolver(
            history,
            max_commits=config.max_commits,
            timeout=config.history_timeout,
        )
        self._cache: IntroductionCache[tuple[str, str], Introduction] = IntroductionCache()
        self._lock = threading.Lock()
        self._declarations: dict[str, Occurrence] = {}
        self._scanned: dict[str, list[Occurrence]] = {}

    def __enter__(self) -> Auditor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._cache.clear()
        with self._lock:
            self._declarations.clear()
            self._scanned.clear()

    def declaration(self, symbol: str) -> Occurrence | None:
        with self._lock:
            return self._declarations.get(symbol)

    def index(self, units: Iterable[AnalysisUnit]) -> None:
        """Register the declarations of ``units`` before any unit is audited."""
        for unit in units:
            self._scan(unit)

    def introduction(self, symbol: str, path: str | Path) -> Introduction:
        rel_path = self.resolver.relative_path(path)
        key = (symbol, rel_path if rel_path is not None else str(path))
        return self._cache.get_or_compute(key, lambda: self.resolver.resolve(symbol, path))

    def audit_unit(self, unit: AnalysisUnit) -> list[Diagnostic]:
        occurrences = self._scan(unit)
        usages: dict[str, list[Occurrence]] = {}
        for occurrence in occurrences:
            if occurrence.kind == USAGE:
                usages.setdefault(occurrence.symbol, []).append(occurrence)

        introductions: dict[str, Introduction] = {}
        for symbol in usages:
            declaration = self.declaration(symbol)
            if declaration is None:
                logger.debug("%s is used in %s but never declared", symbol, unit.name)
                continue
            introductions[symbol] = self.introduction(symbol, declaration.position.path)

        diagnostics = evaluate(introductions, usages, self.config.cutoff, self.now)
        for diagnostic in diagnostics:
            self.reporter.report(diagnostic.position, diagnostic.message)
        logger.info("Unit %s: %d stale usage(s)", unit.name, len(diagnostics))
        return diagnostics

    def run(self, units: Iterable[AnalysisUnit], jobs: int | None = None) -> list[Diagnostic]:
        units = sorted(units, key=lambda unit: unit.name)
        self.index(units)
        jobs = jobs if jobs is not None else self.config.jobs
        if jobs <= 1 or len(units) <= 1:
            results = [self.audit_unit(unit) for unit in units]
        else:
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                results = list(pool.map(self.audit_unit, units))
        diagnostics = [diagnostic for result in results for diagnostic in result]
        diagnostics.sort(key=lambda d: d.position)
        return diagnostics

    def _scan(self, unit: AnalysisUnit) -> list[Occurrence]:
        key = unit.root.joinpath(unit.name).as_posix()
        with self._lock:
            cached = self._scanned.get(key)
        if cached is not None:
            return cached
        occurrences = scan_unit(unit, self.config.symbols)
        with self._lock:
            self._scanned.setdefault(key, occurrences)
            for occurrence in occurrences:
                if occurrence.kind != DECLARATION:
                    continue
                # Smallest (path, line, column) wins, independent of scan order.
                current = self._declarations.get(occurrence.symbol)
                if current is None or occurrence.position < current.position:
                    self._declarations[occurrence.symbol] = occurrence
        return occurrences
