"""
Check-in ledger.

Invariant: at most one check-in per (user, studio, local calendar day).

`create_check_in` is a check-then-act protocol against an eventually consistent
store:

1. consult the local "checked in today" flag, then query the store for
   `(userId, studioId)` within `[start_of_local_day, start_of_next_local_day)`;
2. if anything is found the outcome is "already checked in";
3. otherwise set the local flag to True *before* the write, so a second tap in
   this client is refused while the write is in flight;
4. append the CheckIn with `checkinTime = now()`.

Accepted risk: two devices racing through step 1 for the same user/studio/day
can both append, leaving a duplicate history row. The store offers no
conditional write, and a duplicate row has no billing or safety consequence,
so this is left as is.

Check-ins are append-only; nothing here updates or deletes them.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable

import pydantic

from studiopass.config.settings import Settings, get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import AlreadyCheckedInError, DomainError, TransientNetworkError
from studiopass.core.time import local_date, local_day_bounds, now_in, start_of_local_month, trailing_week_start
from studiopass.domain.models import CheckIn, CheckInResult, CheckInStats, StudioVisitCount
from studiopass.store.interfaces import DocumentSnapshot, Filter, OrderBy

logger = logging.getLogger(__name__)


class CheckInLedger:
    def __init__(
        self,
        store,
        cache: KeyedCache,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._tz = self._settings.app.timezone
        self._collection = self._settings.checkin.collection
        self._clock = clock or (lambda: now_in(self._tz))

    # ---- store access ----

    async def _query(
        self,
        operation: str,
        filters: list[Filter],
        *,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        try:
            return await self._store.query(self._collection, filters, order_by, limit)
        except DomainError:
            raise
        except Exception as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise TransientNetworkError(operation, exc) from exc

    def _to_check_ins(self, snapshots: list[DocumentSnapshot]) -> list[CheckIn]:
        out: list[CheckIn] = []
        for snap in snapshots:
            try:
                out.append(CheckIn.from_document(snap.id, snap.data or {}))
            except pydantic.ValidationError:
                logger.warning("Skipping malformed check-in document %s", snap.id)
        return out

    # ---- the invariant ----

    def _today_key(self, user_id: str, studio_id: str, now: datetime) -> str:
        return keys.checked_in_today_key(user_id, studio_id, local_date(now, self._tz))

    def _set_flag(self, key: str, now: datetime, value: bool) -> None:
        # Flags from earlier days can never answer again; keep only today's.
        today = keys.checked_in_today_prefix(local_date(now, self._tz))
        self._cache.invalidate_prefix(keys.CHECKED_IN_TODAY_PREFIX, keep=today)
        self._cache.set(key, value)

    async def _exists_today(self, user_id: str, studio_id: str, now: datetime) -> bool:
        start, end = local_day_bounds(now, self._tz)
        snapshots = await self._query(
            "Check-in lookup",
            [
                ("userId", "==", user_id),
                ("studioId", "==", studio_id),
                ("checkinTime", ">=", start),
                ("checkinTime", "<", end),
            ],
            limit=1,
        )
        return bool(snapshots)

    async def has_checked_in_today(self, user_id: str, studio_id: str) -> bool:
        now = self._clock()
        key = self._today_key(user_id, studio_id, now)
        if self._cache.get(key) is True:
            return True
        found = await self._exists_today(user_id, studio_id, now)
        if found:
            self._set_flag(key, now, True)
        return found

    async def create_check_in(self, user_id: str, studio_id: str) -> str:
        """Append today's check-in and return its id.

        Raises:
            AlreadyCheckedInError: The user already checked in at this studio today.
            TransientNetworkError: The lookup or the write failed; nothing was recorded.
        """
        now = self._clock()
        key = self._today_key(user_id, studio_id, now)

        if self._cache.get(key) is True or await self._exists_today(user_id, studio_id, now):
            self._set_flag(key, now, True)
            raise AlreadyCheckedInError(user_id, studio_id)

        # Optimistic flag, ahead of the write.
        self._set_flag(key, now, True)
        payload = {"userId": user_id, "studioId": studio_id, "checkinTime": now}
        try:
            check_in_id = await self._store.add(self._collection, payload)
        except Exception as exc:
            self._set_flag(key, now, False)
            logger.warning("Check-in write failed for user=%s studio=%s: %s", user_id, studio_id, exc)
            if isinstance(exc, DomainError):
                raise
            raise TransientNetworkError("Check-in write", exc) from exc

        self._cache.invalidate(keys.user_checkin_stats_key(user_id, local_date(now, self._tz)))
        logger.info("Check-in %s recorded for user=%s studio=%s", check_in_id, user_id, studio_id)
        return check_in_id

    async def check_and_create(self, user_id: str, studio_id: str) -> CheckInResult:
        """Like `create_check_in`, but "already checked in" is returned instead of raised."""
        try:
            check_in_id = await self.create_check_in(user_id, studio_id)
        except AlreadyCheckedInError:
            return CheckInResult(success=False, already_checked_in=True, studio_id=studio_id)
        return CheckInResult(success=True, check_in_id=check_in_id, studio_id=studio_id)

    # ---- history ----

    async def get_user_check_ins(self, user_id: str, limit: int | None = None) -> list[CheckIn]:
        """Most recent check-ins of a user, newest first."""
        snapshots = await self._query(
            "User check-in history",
            [("userId", "==", user_id)],
            order_by=[("checkinTime", "desc")],
            limit=limit or self._settings.checkin.history_limit,
        )
        return self._to_check_ins(snapshots)

    async def get_studio_check_ins(self, studio_id: str, limit: int | None = None) -> list[CheckIn]:
        snapshots = await self._query(
            "Studio check-in history",
            [("studioId", "==", studio_id)],
            order_by=[("checkinTime", "desc")],
            limit=limit or self._settings.checkin.studio_history_limit,
        )
        return self._to_check_ins(snapshots)

    async def get_user_check_in_history(self, user_id: str, start: datetime, end: datetime) -> list[CheckIn]:
        """Check-ins of a user with `start <= checkinTime <= end`, newest first."""
        snapshots = await self._query(
            "User check-in range",
            [("userId", "==", user_id), ("checkinTime", ">=", start), ("checkinTime", "<=", end)],
            order_by=[("checkinTime", "desc")],
        )
        return self._to_check_ins(snapshots)

    async def get_user_check_in_count(self, user_id: str) -> int:
        return len(await self._query("User check-in count", [("userId", "==", user_id)]))

    async def get_studio_check_in_count(self, studio_id: str) -> int:
        return len(await self._query("Studio check-in count", [("studioId", "==", studio_id)]))

    async def get_recent_check_ins(self, limit: int | None = None) -> list[CheckIn]:
        """Newest check-ins across all studios (admin view)."""
        snapshots = await self._query(
            "Recent check-ins",
            [],
            order_by=[("checkinTime", "desc")],
            limit=limit or self._settings.checkin.history_limit,
        )
        return self._to_check_ins(snapshots)

    async def get_user_most_visited_studios(self, user_id: str, limit: int | None = None) -> list[StudioVisitCount]:
        window = await self.get_user_check_ins(user_id, self._settings.checkin.stats_window)
        return _most_visited(window, limit or self._settings.checkin.most_visited_limit)

    # ---- stats ----

    async def get_user_check_in_stats(self, user_id: str) -> CheckInStats:
        """Aggregate stats from the most recent `checkin.stats_window` check-ins.

        Older check-ins beyond the window are not counted. Results are cached per
        local day for `checkin.stats_ttl_seconds`, so check-ins written by other
        clients show up once the entry expires.
        """
        now = self._clock()
        today = local_date(now, self._tz)
        key = keys.user_checkin_stats_key(user_id, today)
        cached = self._cache.get(key, max_age_seconds=self._settings.checkin.stats_ttl_seconds)
        if isinstance(cached, CheckInStats):
            return cached

        window = await self.get_user_check_ins(user_id, self._settings.checkin.stats_window)
        stats = summarize_check_ins(window, now=now, timezone=self._tz)
        self._cache.invalidate_prefix(keys.CHECKIN_STATS_PREFIX, keep=keys.checkin_stats_prefix(today))
        self._cache.set(key, stats)
        return stats


def _most_visited(check_ins: list[CheckIn], limit: int) -> list[StudioVisitCount]:
    counts = Counter(c.studio_id for c in check_ins)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [StudioVisitCount(studio_id=studio_id, count=count) for studio_id, count in ranked[:limit]]


def _current_streak(check_ins: list[CheckIn], now: datetime, timezone: str) -> int:
    # Consecutive local days with at least one check-in, ending today (or yesterday
    # when there is none today yet).
    days = {local_date(c.checkin_time, timezone) for c in check_ins}
    cursor = local_date(now, timezone)
    if cursor not in days:
        cursor -= timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def summarize_check_ins(check_ins: list[CheckIn], *, now: datetime, timezone: str) -> CheckInStats:
    month_start = start_of_local_month(now, timezone)
    week_start = trailing_week_start(now)
    top = _most_visited(check_ins, 1)
    return CheckInStats(
        total_check_ins=len(check_ins),
        this_month=sum(1 for c in check_ins if month_start <= c.checkin_time <= now),
        this_week=sum(1 for c in check_ins if week_start <= c.checkin_time <= now),
        unique_studios=len({c.studio_id for c in check_ins}),
        most_visited_studio=top[0] if top else None,
        current_streak_days=_current_streak(check_ins, now, timezone),
        window_size=len(check_ins),
    )
