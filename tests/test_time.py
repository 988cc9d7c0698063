from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from studiopass.core.time import (
    local_date,
    local_day_bounds,
    parse_datetime,
    start_of_local_month,
    trailing_week_start,
)

TZ = "Europe/Berlin"


def test_parse_datetime_attaches_timezone_and_accepts_z():
    naive = parse_datetime("2026-01-05T10:00", TZ)
    assert naive.tzinfo is not None
    assert naive.utcoffset() == timedelta(hours=1)

    utc = parse_datetime("2026-01-05T10:00Z", TZ)
    assert utc.utcoffset() == timedelta(0)


def test_local_day_bounds_follow_the_configured_timezone():
    # 23:30 UTC on Jan 5 is already Jan 6 in Berlin.
    dt = datetime(2026, 1, 5, 23, 30, tzinfo=ZoneInfo("UTC"))
    start, end = local_day_bounds(dt, TZ)
    assert local_date(dt, TZ).isoformat() == "2026-01-06"
    assert start == datetime(2026, 1, 6, tzinfo=ZoneInfo(TZ))
    assert end == datetime(2026, 1, 7, tzinfo=ZoneInfo(TZ))
    assert start <= dt < end


def test_local_day_bounds_span_a_short_dst_day():
    dt = datetime(2026, 3, 29, 12, 0, tzinfo=ZoneInfo(TZ))
    start, end = local_day_bounds(dt, TZ)
    utc = ZoneInfo("UTC")
    assert end.astimezone(utc) - start.astimezone(utc) == timedelta(hours=23)


def test_month_and_week_starts():
    now = datetime(2026, 3, 18, 12, 0, tzinfo=ZoneInfo(TZ))
    assert start_of_local_month(now, TZ) == datetime(2026, 3, 1, tzinfo=ZoneInfo(TZ))
    assert trailing_week_start(now) == datetime(2026, 3, 11, 12, 0, tzinfo=ZoneInfo(TZ))
