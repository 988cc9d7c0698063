"""
Time parsing, timezone normalization and local calendar boundaries.

The check-in invariant is "at most one per user/studio per *local* calendar day",
so every day/week/month boundary here is computed in the configured timezone and
returned as a timezone-aware datetime.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def ensure_tz(dt: datetime, timezone: str) -> datetime:
    """Ensure `dt` has tzinfo; attach `timezone` if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(timezone))
    return dt


def parse_datetime(value: str, timezone: str) -> datetime:
    """Parse ISO-8601 datetime string and ensure tzinfo is present.

    Accepts a trailing `Z` (UTC). If the parsed value is naive, `timezone` is attached.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_tz(datetime.fromisoformat(value), timezone)


def now_in(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone))


def local_date(dt: datetime, timezone: str) -> date:
    """The calendar date of `dt` as seen in `timezone`."""
    return ensure_tz(dt, timezone).astimezone(ZoneInfo(timezone)).date()


def local_day_bounds(dt: datetime, timezone: str) -> tuple[datetime, datetime]:
    """Return `[start_of_local_day, start_of_next_local_day)` containing `dt`."""
    tz = ZoneInfo(timezone)
    day = local_date(dt, timezone)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def start_of_local_month(dt: datetime, timezone: str) -> datetime:
    day = local_date(dt, timezone)
    return datetime.combine(day.replace(day=1), time.min, tzinfo=ZoneInfo(timezone))


def trailing_week_start(dt: datetime) -> datetime:
    """Start of the trailing seven-day window ending at `dt`."""
    return dt - timedelta(days=7)
