from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from flag_exorcist.models import Diagnostic, Found, Introduction, Occurrence
from flag_exorcist.report import format_message


def is_stale(introduced_at: datetime, cutoff: timedelta, now: datetime) -> bool:
    # Compares ages, so a huge cutoff cannot push a date out of range.
    return now - introduced_at > cutoff


def evaluate(
    introductions: Mapping[str, Introduction],
    usages: Mapping[str, Sequence[Occurrence]],
    cutoff: timedelta,
    now: datetime,
) -> list[Diagnostic]:
    """One diagnostic per usage of every symbol introduced before ``now - cutoff``.

    Symbols without a known introduction or without usages produce nothing.
    """
    diagnostics: list[Diagnostic] = []
    for symbol, occurrences in usages.items():
        introduction = introductions.get(symbol)
        if not isinstance(introduction, Found) or not occurrences:
            continue
        if not is_stale(introduction.introduced_at, cutoff, now):
            continue
        message = format_message(symbol, introduction.introduced_at, cutoff)
        for occurrence in occurrences:
            diagnostics.append(
                Diagnostic(
                    position=occurrence.position,
                    symbol=symbol,
                    introduced_at=introduction.introduced_at,
                    cutoff_days=cutoff.days,
                    message=message,
                )
            )
    return diagnostics
