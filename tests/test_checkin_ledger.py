import asyncio
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from studiopass.checkin.ledger import CheckInLedger
from studiopass.config.settings import get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import AlreadyCheckedInError, TransientNetworkError
from studiopass.store.memory import InMemoryDocumentStore

TZ = ZoneInfo(get_settings().app.timezone)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _ledger(now: datetime, settings=None, *, store=None, cache=None):
    store = store or InMemoryDocumentStore()
    cache = cache or KeyedCache()
    clock = _Clock(now)
    return store, cache, clock, CheckInLedger(store, cache, settings or get_settings(), clock=clock)


def _rows(store: InMemoryDocumentStore, user_id: str = "u1") -> list:
    return asyncio.run(store.query("checkIn", [("userId", "==", user_id)]))


def test_has_checked_in_today_lifecycle():
    store, _, clock, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))

    assert asyncio.run(ledger.has_checked_in_today("u1", "42")) is False
    asyncio.run(ledger.create_check_in("u1", "42"))
    assert asyncio.run(ledger.has_checked_in_today("u1", "42")) is True
    # Other studios are independent.
    assert asyncio.run(ledger.has_checked_in_today("u1", "7")) is False

    clock.now = datetime(2026, 3, 19, 0, 5, tzinfo=TZ)
    assert asyncio.run(ledger.has_checked_in_today("u1", "42")) is False


def test_second_check_in_same_day_is_refused_without_a_new_row():
    store, _, clock, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))

    check_in_id = asyncio.run(ledger.create_check_in("u1", "42"))
    assert check_in_id

    clock.now = datetime(2026, 3, 18, 9, 5, tzinfo=TZ)
    with pytest.raises(AlreadyCheckedInError):
        asyncio.run(ledger.create_check_in("u1", "42"))
    assert len(_rows(store)) == 1


def test_existing_row_is_detected_without_the_local_flag():
    # Another device already checked in; this client has an empty cache.
    store, cache, _, ledger = _ledger(datetime(2026, 3, 18, 18, 0, tzinfo=TZ))
    asyncio.run(
        store.add("checkIn", {"userId": "u1", "studioId": "42", "checkinTime": datetime(2026, 3, 18, 7, 0, tzinfo=TZ)})
    )

    result = asyncio.run(ledger.check_and_create("u1", "42"))
    assert result.success is False
    assert result.already_checked_in is True
    assert cache.get(keys.checked_in_today_key("u1", "42", date(2026, 3, 18))) is True


def test_yesterdays_row_does_not_block_today():
    store, _, _, ledger = _ledger(datetime(2026, 3, 19, 0, 5, tzinfo=TZ))
    asyncio.run(
        store.add("checkIn", {"userId": "u1", "studioId": "42", "checkinTime": datetime(2026, 3, 18, 23, 59, tzinfo=TZ)})
    )
    result = asyncio.run(ledger.check_and_create("u1", "42"))
    assert result.success is True
    assert len(_rows(store)) == 2


def test_flag_is_set_before_the_write_and_reset_when_it_fails():
    store, cache, _, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))
    flag = keys.checked_in_today_key("u1", "42", date(2026, 3, 18))
    seen_during_write = []

    original_add = store.add

    async def observing_add(collection, data):
        seen_during_write.append(cache.get(flag))
        raise ConnectionError("offline")

    store.add = observing_add
    with pytest.raises(TransientNetworkError):
        asyncio.run(ledger.create_check_in("u1", "42"))

    assert seen_during_write == [True]
    assert cache.get(flag) is False
    assert asyncio.run(ledger.has_checked_in_today("u1", "42")) is False

    # Once the store is back the check-in goes through.
    store.add = original_add
    assert asyncio.run(ledger.check_and_create("u1", "42")).success is True


def test_lookup_failure_is_transient():
    store, _, _, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))
    store.inject_failure("query", TimeoutError("slow"), collection="checkIn")
    with pytest.raises(TransientNetworkError):
        asyncio.run(ledger.create_check_in("u1", "42"))
    assert _rows(store) == []


def test_successful_check_in_invalidates_derived_user_keys():
    _, cache, _, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))
    asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert keys.user_checkin_stats_key("u1", date(2026, 3, 18)) in cache

    asyncio.run(ledger.create_check_in("u1", "42"))
    assert keys.user_checkin_stats_key("u1", date(2026, 3, 18)) not in cache
    assert asyncio.run(ledger.get_user_check_in_stats("u1")).total_check_ins == 1


def _seed_history(store: InMemoryDocumentStore) -> None:
    history = [
        ("s1", datetime(2026, 3, 18, 8, 0, tzinfo=TZ)),
        ("s1", datetime(2026, 3, 17, 19, 0, tzinfo=TZ)),
        ("s2", datetime(2026, 3, 16, 7, 30, tzinfo=TZ)),
        ("s1", datetime(2026, 3, 8, 10, 0, tzinfo=TZ)),
        ("s3", datetime(2026, 2, 20, 10, 0, tzinfo=TZ)),
    ]
    for studio_id, when in history:
        asyncio.run(store.add("checkIn", {"userId": "u1", "studioId": studio_id, "checkinTime": when}))
    asyncio.run(store.add("checkIn", {"userId": "u2", "studioId": "s1", "checkinTime": history[0][1]}))


def test_check_in_stats():
    store, _, _, ledger = _ledger(datetime(2026, 3, 18, 12, 0, tzinfo=TZ))
    _seed_history(store)

    stats = asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert stats.total_check_ins == 5
    assert stats.this_month == 4
    assert stats.this_week == 3
    assert stats.unique_studios == 3
    assert stats.most_visited_studio is not None
    assert (stats.most_visited_studio.studio_id, stats.most_visited_studio.count) == ("s1", 3)
    assert stats.current_streak_days == 3
    assert stats.window_size == 5


def test_check_in_stats_only_scan_the_recent_window():
    base = get_settings()
    settings = base.model_copy(update={"checkin": base.checkin.model_copy(update={"stats_window": 2})})
    store, _, _, ledger = _ledger(datetime(2026, 3, 18, 12, 0, tzinfo=TZ), settings)
    _seed_history(store)

    stats = asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert stats.total_check_ins == 2
    assert stats.unique_studios == 1
    assert stats.window_size == 2


def test_history_reads():
    store, _, _, ledger = _ledger(datetime(2026, 3, 18, 12, 0, tzinfo=TZ))
    _seed_history(store)

    recent = asyncio.run(ledger.get_user_check_ins("u1", 2))
    assert [c.checkin_time.day for c in recent] == [18, 17]

    march = asyncio.run(
        ledger.get_user_check_in_history(
            "u1", datetime(2026, 3, 1, tzinfo=TZ), datetime(2026, 3, 31, 23, 59, tzinfo=TZ)
        )
    )
    assert len(march) == 4

    assert asyncio.run(ledger.get_user_check_in_count("u1")) == 5
    assert asyncio.run(ledger.get_studio_check_in_count("s1")) == 4
    assert [c.user_id for c in asyncio.run(ledger.get_studio_check_ins("s1"))][:2] == ["u1", "u2"]

    top = asyncio.run(ledger.get_user_most_visited_studios("u1", 2))
    assert [(v.studio_id, v.count) for v in top] == [("s1", 3), ("s2", 1)]

    assert len(asyncio.run(ledger.get_recent_check_ins(3))) == 3


def test_streak_counts_from_yesterday_when_nothing_today():
    store, _, _, ledger = _ledger(datetime(2026, 3, 19, 12, 0, tzinfo=TZ))
    _seed_history(store)
    stats = asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert stats.current_streak_days == 3


def test_cached_stats_are_recomputed_on_a_new_day():
    store, _, clock, ledger = _ledger(datetime(2026, 3, 18, 12, 0, tzinfo=TZ))
    _seed_history(store)
    before = asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert (before.this_week, before.this_month, before.current_streak_days) == (3, 4, 3)

    clock.now = datetime(2026, 4, 20, 12, 0, tzinfo=TZ)
    after = asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert (after.this_week, after.this_month, after.current_streak_days) == (0, 0, 0)
    assert after.total_check_ins == 5


def test_cached_stats_pick_up_other_clients_after_ttl():
    ttl = get_settings().checkin.stats_ttl_seconds
    mono = [0.0]
    store = InMemoryDocumentStore()
    now = datetime(2026, 3, 18, 12, 0, tzinfo=TZ)
    _, _, _, phone = _ledger(now, store=store, cache=KeyedCache(clock=lambda: mono[0]))
    _, _, _, tablet = _ledger(now, store=store, cache=KeyedCache(clock=lambda: mono[0]))

    assert asyncio.run(phone.get_user_check_in_stats("u1")).total_check_ins == 0
    asyncio.run(tablet.create_check_in("u1", "42"))

    mono[0] = ttl - 1
    assert asyncio.run(phone.get_user_check_in_stats("u1")).total_check_ins == 0
    mono[0] = ttl + 1
    assert asyncio.run(phone.get_user_check_in_stats("u1")).total_check_ins == 1


def test_only_todays_flags_and_stats_stay_cached():
    store, cache, clock, ledger = _ledger(datetime(2026, 3, 18, 9, 0, tzinfo=TZ))
    asyncio.run(ledger.create_check_in("u1", "42"))
    asyncio.run(ledger.get_user_check_in_stats("u1"))
    assert keys.checked_in_today_key("u1", "42", date(2026, 3, 18)) in cache
    assert keys.user_checkin_stats_key("u1", date(2026, 3, 18)) in cache

    clock.now = datetime(2026, 3, 19, 9, 0, tzinfo=TZ)
    asyncio.run(ledger.create_check_in("u2", "7"))
    asyncio.run(ledger.get_user_check_in_stats("u2"))

    assert keys.checked_in_today_key("u1", "42", date(2026, 3, 18)) not in cache
    assert keys.user_checkin_stats_key("u1", date(2026, 3, 18)) not in cache
    assert sorted(cache.keys()) == [
        keys.user_checkin_stats_key("u2", date(2026, 3, 19)),
        keys.checked_in_today_key("u2", "7", date(2026, 3, 19)),
    ]
