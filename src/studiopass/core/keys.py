"""Canonical cache keys.

Every consumer of the shared cache builds keys through these helpers so that a
writer and its invalidations always agree on spelling. Prefixes end with ":" so
that `u1` never matches `u10`.

Day-scoped keys put the local date right after their namespace; writers drop
every other day under that namespace, so only the current day stays cached.
"""

from __future__ import annotations

from datetime import date

STUDIOS_LIST = "studios:list"

CHECKED_IN_TODAY_PREFIX = "checkins:today:"
CHECKIN_STATS_PREFIX = "checkins:stats:"


def user_key(uid: str) -> str:
    return f"user:{uid}"


def user_status_key(uid: str) -> str:
    return f"user:{uid}:subscriptionStatus"


def subscription_key(subscription_id: str) -> str:
    return f"subscription:{subscription_id}"


def user_subscriptions_prefix(uid: str) -> str:
    return f"subscriptions:user:{uid}:"


def user_subscriptions_key(uid: str) -> str:
    return f"{user_subscriptions_prefix(uid)}list"


def user_active_subscription_key(uid: str) -> str:
    return f"{user_subscriptions_prefix(uid)}active"


def checked_in_today_prefix(day: date) -> str:
    return f"{CHECKED_IN_TODAY_PREFIX}{day.isoformat()}:"


def checked_in_today_key(uid: str, studio_id: str, day: date) -> str:
    # The local date is part of the key, so yesterday's flag never answers for today.
    return f"{checked_in_today_prefix(day)}{uid}:{studio_id}"


def checkin_stats_prefix(day: date) -> str:
    return f"{CHECKIN_STATS_PREFIX}{day.isoformat()}:"


def user_checkin_stats_key(uid: str, day: date) -> str:
    return f"{checkin_stats_prefix(day)}{uid}"
