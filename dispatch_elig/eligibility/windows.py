from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

Clock = Callable[[], date]


def make_clock(timezone_name: str) -> Clock:
    zone = ZoneInfo(timezone_name)

    def today() -> date:
        return datetime.now(zone).date()

    return today


def as_day(value: date | datetime | str | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = value.strip()
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def is_day_window_active(start: date | datetime | str | None, end: date | datetime | str | None, today: date) -> bool:
    """Day-granularity window check; a missing end means open-ended."""
    start_day = as_day(start)
    if start_day is None or start_day > today:
        return False
    end_day = as_day(end)
    if end_day is None:
        return end is None
    return end_day >= today


def is_day_on_or_after(value: date | datetime | str | None, today: date) -> bool:
    """True while ``value`` is today or later; missing or unparseable days count as past."""
    day = as_day(value)
    return day is not None and day >= today
