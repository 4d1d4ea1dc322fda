"""
Brazil calendar/time helpers.

Converts localized sheet strings into absolute instants and instants back into
local (America/Sao_Paulo) calendar dates. Every "local day" boundary in the
system is derived from these functions.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

LOCAL_TZ = ZoneInfo("America/Sao_Paulo")

# English and Portuguese three-letter month abbreviations
MONTHS = {
    "jan": 1, "feb": 2, "fev": 2, "mar": 3, "apr": 4, "abr": 4,
    "may": 5, "mai": 5, "jun": 6, "jul": 7, "aug": 8, "ago": 8,
    "sep": 9, "set": 9, "oct": 10, "out": 10, "nov": 11, "dec": 12, "dez": 12,
}

_BR_DATETIME = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:[ T]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_WEEKDAY_DATETIME = re.compile(
    r"^(\d{1,2})\s+([A-Za-z]{3})\s+(\d{4})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_WEEKDAY_PREFIX = re.compile(r"^[A-Za-z]{3},?\s*")


def to_local(instant: datetime) -> datetime:
    """Return ``instant`` in Brazil local time. Naive values are taken as already local."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=LOCAL_TZ)
    return instant.astimezone(LOCAL_TZ)


def local_date(instant: datetime) -> date:
    return to_local(instant).date()


def brazil_date_string(instant: Optional[datetime]) -> str:
    """Format an instant as its local ``YYYY-MM-DD`` calendar date, or '' when missing."""
    if instant is None:
        return ""
    return local_date(instant).isoformat()


def brazil_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def local_midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=LOCAL_TZ)


def at_local_hour(day: date, hour: int) -> datetime:
    return local_midnight(day) + timedelta(hours=hour)


def format_display_date(day: date) -> str:
    return day.strftime("%d/%m")


def _build(year, month, day, hour=None, minute=None, second=None) -> Optional[datetime]:
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour or 0), int(minute or 0), int(second or 0),
            tzinfo=LOCAL_TZ,
        )
    except ValueError:
        return None


def parse_brazil_datetime(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse a sheet timestamp into an aware datetime.

    Accepted forms:
      - ``DD/MM/YYYY HH:MM:SS`` (single-digit day, month and hour tolerated,
        seconds optional, time optional)
      - ``Thu, 08 Jan 2026 14:21:00`` (weekday prefix, English or Portuguese month)
      - ISO 8601, with or without offset

    Returns None when the text cannot be interpreted.
    """
    if not raw:
        return None
    text = raw.strip()
    if not text:
        return None

    match = _BR_DATETIME.match(text)
    if match:
        d, m, y, hh, mm, ss = match.groups()
        return _build(y, m, d, hh, mm, ss)

    match = _WEEKDAY_DATETIME.match(_WEEKDAY_PREFIX.sub("", text, count=1).strip())
    if match:
        d, mon, y, hh, mm, ss = match.groups()
        month = MONTHS.get(mon.lower())
        if month is None:
            return None
        return _build(y, month, d, hh, mm, ss)

    try:
        return to_local(datetime.fromisoformat(text))
    except ValueError:
        return None


def normalize_draw_date(raw: Optional[str]) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` or ``DD/MM/YYYY`` (either separator) and return a date."""
    if not raw:
        return None
    parts = re.split(r"[/\-]", raw.strip())
    if len(parts) != 3:
        return None
    try:
        if len(parts[0]) == 4:
            return date(int(parts[0]), int(parts[1]), int(parts[2]))
        return date(int(parts[2]), int(parts[1]), int(parts[0]))
    except ValueError:
        return None
