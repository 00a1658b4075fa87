from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

from flag_exorcist.models import Diagnostic, Position


class Reporter(Protocol):
    def report(self, position: Position, message: str) -> None: ...


class CollectingReporter:
    """Reporter that keeps every report, safe to share between worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reports: list[tuple[Position, str]] = []

    def report(self, position: Position, message: str) -> None:
        with self._lock:
            self.reports.append((position, message))


def format_message(symbol: str, introduced_at: datetime, cutoff: timedelta) -> str:
    added_on = introduced_at.astimezone(timezone.utc).date().isoformat()
    return f"Flag '{symbol}', added on {added_on}, is more than {cutoff.days} days old"


def display_path(path: str, root: Path | None) -> str:
    if root is None:
        return path
    try:
        return Path(path).relative_to(root).as_posix()
    except ValueError:
        return path


def render_text(reports: Iterable[tuple[Position, str]], root: Path | None = None) -> str:
    """One ``path:line:column: message`` line per report, in position order."""
    lines = [
        f"{display_path(position.path, root)}:{position.line}:{position.column}: {message}"
        for position, message in sorted(reports, key=lambda report: report[0])
    ]
    return "\n".join(lines) + ("\n" if lines else "")


def render_json(diagnostics: Iterable[Diagnostic], root: Path | None = None) -> str:
    ordered = sorted(diagnostics, key=lambda d: d.position)
    by_symbol: dict[str, int] = {}
    entries: list[dict[str, Any]] = []
    for diagnostic in ordered:
        by_symbol[diagnostic.symbol] = by_symbol.get(diagnostic.symbol, 0) + 1
        entries.append(
            {
                "path": display_path(diagnostic.position.path, root),
                "line": diagnostic.position.line,
                "column": diagnostic.position.column,
                "symbol": diagnostic.symbol,
                "introduced_at": diagnostic.introduced_at.isoformat(),
                "cutoff_days": diagnostic.cutoff_days,
                "message": diagnostic.message,
            }
        )
    document = {
        "diagnostics": entries,
        "summary": {"total": len(entries), "by_symbol": dict(sorted(by_symbol.items()))},
    }
    return json.dumps(document, indent=2, sort_keys=True) + "\n"
