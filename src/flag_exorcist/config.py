from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from flag_exorcist.errors import ConfigError

ENV_SYMBOLS = "FLAG_SYMBOLS"
ENV_CUTOFF = "CUTOFF"
ENV_REPO_PATH = "REPO_PATH"
ENV_LOG_LEVEL = "LOG_LEVEL"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AuditConfig:
    symbols: tuple[str, ...]
    cutoff: timedelta
    repo_path: Path | None = None
    log_level: str = "INFO"
    max_commits: int | None = None
    history_timeout: float | None = None
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    jobs: int = 1

    @property
    def cutoff_days(self) -> int:
        return self.cutoff.days


def build_config(
    *,
    symbols: Iterable[str] | None = None,
    cutoff_days: int | str | None = None,
    repo_path: str | Path | None = None,
    log_level: str | None = None,
    max_commits: int | None = None,
    history_timeout: float | None = None,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    jobs: int = 1,
    environ: Mapping[str, str] | None = None,
) -> AuditConfig:
    """Build a validated config, falling back to environment variables.

    Explicit arguments win over the environment. Raises ConfigError when a
    required value is missing or a value is malformed.
    """
    environ = environ if environ is not None else {}

    names = _parse_symbols(symbols, environ.get(ENV_SYMBOLS))
    if not names:
        raise ConfigError(
            f"at least one flag symbol is required (--symbol or {ENV_SYMBOLS})"
        )

    if cutoff_days is None:
        cutoff_days = environ.get(ENV_CUTOFF)
    if cutoff_days is None or cutoff_days == "":
        raise ConfigError(f"a cutoff is required (--cutoff-days or {ENV_CUTOFF})")
    days = _parse_days(cutoff_days)

    if repo_path is None:
        repo_path = environ.get(ENV_REPO_PATH) or None

    level = (log_level or environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    if level not in LOG_LEVELS:
        raise ConfigError(
            f"invalid log level {level!r}, expected one of {', '.join(LOG_LEVELS)}"
        )

    if max_commits is not None and max_commits < 1:
        raise ConfigError("max commits must be a positive integer")
    if history_timeout is not None and history_timeout <= 0:
        raise ConfigError("history timeout must be positive")
    if jobs < 1:
        raise ConfigError("jobs must be at least 1")

    return AuditConfig(
        symbols=names,
        cutoff=timedelta(days=days),
        repo_path=Path(repo_path) if repo_path is not None else None,
        log_level=level,
        max_commits=max_commits,
        history_timeout=history_timeout,
        include=tuple(include),
        exclude=tuple(exclude),
        jobs=jobs,
    )


def _parse_symbols(explicit: Iterable[str] | None, env_value: str | None) -> tuple[str, ...]:
    raw: list[str] = []
    if explicit:
        for value in explicit:
            raw.extend(value.split(","))
    elif env_value:
        raw.extend(env_value.split(","))
    names: list[str] = []
    for name in raw:
        name = name.strip()
        if not name:
            continue
        if not name.isidentifier():
            raise ConfigError(f"flag symbol {name!r} is not a valid identifier")
        if name not in names:
            names.append(name)
    return tuple(names)


def _parse_days(value: int | str) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"cutoff must be a whole number of days, got {value!r}") from None
    if days < 0:
        raise ConfigError(f"cutoff must not be negative, got {days}")
    if days > timedelta.max.days:
        raise ConfigError(f"cutoff must be at most {timedelta.max.days} days, got {days}")
    return days
