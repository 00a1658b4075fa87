from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Union

DECLARATION = "declaration"
USAGE = "usage"


@dataclass(frozen=True, order=True)
class Position:
    path: str  # absolute, POSIX separators
    line: int  # 1-based
    column: int  # 1-based


@dataclass(frozen=True)
class Occurrence:
    symbol: str
    kind: str  # DECLARATION or USAGE
    position: Position


@dataclass(frozen=True)
class Commit:
    sha: str
    parents: tuple[str, ...]
    authored_at: datetime


@dataclass(frozen=True)
class Found:
    symbol: str
    commit: str
    introduced_at: datetime


@dataclass(frozen=True)
class NotFound:
    symbol: str
    reason: str


Introduction = Union[Found, NotFound]


@dataclass(frozen=True)
class Diagnostic:
    position: Position
    symbol: str
    introduced_at: datetime
    cutoff_days: int
    message: str


@dataclass(frozen=True)
class AnalysisUnit:
    name: str
    root: Path
    files: tuple[Path, ...]
