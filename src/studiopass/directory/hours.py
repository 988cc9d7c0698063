"""Opening-hours evaluation for the "open now" directory filter."""

from __future__ import annotations

from datetime import datetime, time, timedelta

from studiopass.domain.models import DayHours, Studio

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _parse_hhmm(value: str) -> time | None:
    value = (value or "").strip()
    if value == "24:00":
        return time.max
    try:
        hours, minutes = value.split(":", 1)
        return time(int(hours), int(minutes))
    except ValueError:
        return None


def _span(day: DayHours | None) -> tuple[time, time] | None:
    if day is None or day.closed:
        return None
    opens = _parse_hhmm(day.open)
    closes = _parse_hhmm(day.close)
    if opens is None or closes is None:
        return None
    return opens, closes


def hours_for(studio: Studio, when: datetime) -> DayHours | None:
    if not studio.opening_hours:
        return None
    return studio.opening_hours.get(WEEKDAYS[when.weekday()])


def is_open_at(studio: Studio, when: datetime) -> bool | None:
    """Return whether `studio` is open at local time `when`; None if its hours are unknown.

    A closing time earlier than the opening time means the session runs past
    midnight, so the early hours of the next day belong to the previous day's row.
    """
    if not studio.is_active:
        return False
    now = when.time().replace(tzinfo=None)

    spill = _span(hours_for(studio, when - timedelta(days=1)))
    if spill is not None:
        opens, closes = spill
        if closes <= opens and now < closes:
            return True

    day = hours_for(studio, when)
    if day is None:
        return None
    if day.closed:
        return False
    span = _span(day)
    if span is None:
        return None
    opens, closes = span
    if closes <= opens:
        return now >= opens
    return opens <= now < closes
