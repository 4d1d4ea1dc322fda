"""
Draw calendar rules.

No draws happen on Sundays, Christmas (Dec 25) or New Year's Day (Jan 1).
Dec 24 and Dec 31 close early at 16:00; every other day closes at 20:00.
"""

from __future__ import annotations

from datetime import date, timedelta

DEFAULT_CUTOFF_HOUR = 20
EARLY_CUTOFF_HOUR = 16
MAX_DRAW_SEARCH_DAYS = 14

SUNDAY = 6
NO_DRAW_HOLIDAYS = {(12, 25), (1, 1)}
EARLY_CUTOFF_DAYS = {(12, 24), (12, 31)}


class DrawCalendarError(RuntimeError):
    """Raised when no draw day exists inside the search bound; the calendar is misconfigured."""


def is_no_draw_day(day: date) -> bool:
    return day.weekday() == SUNDAY or (day.month, day.day) in NO_DRAW_HOLIDAYS


def is_early_cutoff_day(day: date) -> bool:
    return (day.month, day.day) in EARLY_CUTOFF_DAYS


def cutoff_hour(day: date) -> int:
    """Local hour at which ticket registration closes for ``day``."""
    return EARLY_CUTOFF_HOUR if is_early_cutoff_day(day) else DEFAULT_CUTOFF_HOUR


def next_valid_draw_date(from_date: date) -> date:
    """
    Return the first draw day on or after ``from_date``.

    Raises:
        DrawCalendarError: if no draw day is found within MAX_DRAW_SEARCH_DAYS.
    """
    for offset in range(MAX_DRAW_SEARCH_DAYS):
        probe = from_date + timedelta(days=offset)
        if not is_no_draw_day(probe):
            return probe
    raise DrawCalendarError(
        f"No valid draw date within {MAX_DRAW_SEARCH_DAYS} days of {from_date.isoformat()}"
    )
