"""Subscription lifecycle operations. Every mutation is followed by a status projection."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable

import pydantic

from studiopass.config.settings import Settings, get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import DomainError, NotFoundError, TransientNetworkError, ValidationError
from studiopass.core.time import now_in
from studiopass.domain.models import Subscription, SubscriptionStatus
from studiopass.store.interfaces import DocumentSnapshot, Filter, OrderBy
from studiopass.subscriptions.projector import SubscriptionStatusProjector

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUSES: tuple[str, ...] = ("pending", "active", "canceled", "expired")


class SubscriptionService:
    def __init__(
        self,
        store,
        cache: KeyedCache,
        projector: SubscriptionStatusProjector,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._projector = projector
        self._settings = settings or get_settings()
        self._collection = self._settings.subscriptions.collection
        self._clock = clock or (lambda: now_in(self._settings.app.timezone))

    # ---- store access ----

    async def _call(self, operation: str, coro) -> Any:
        try:
            return await coro
        except DomainError:
            raise
        except Exception as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise TransientNetworkError(operation, exc) from exc

    async def _query(
        self,
        operation: str,
        filters: list[Filter],
        order_by: list[OrderBy] | None = None,
    ) -> list[Subscription]:
        snapshots: list[DocumentSnapshot] = await self._call(
            operation, self._store.query(self._collection, filters, order_by)
        )
        out: list[Subscription] = []
        for snap in snapshots:
            try:
                out.append(Subscription.from_document(snap.id, snap.data or {}))
            except pydantic.ValidationError:
                logger.warning("Skipping malformed subscription document %s", snap.id)
        return out

    def _remember(self, subscription: Subscription) -> None:
        self._cache.set(keys.subscription_key(subscription.subscription_id), subscription)

    # ---- reads ----

    async def get(self, subscription_id: str) -> Subscription:
        cached = self._cache.get(
            keys.subscription_key(subscription_id),
            max_age_seconds=self._settings.subscriptions.subscription_ttl_seconds,
        )
        if isinstance(cached, Subscription):
            return cached
        snap = await self._call("Subscription fetch", self._store.get(self._collection, subscription_id))
        if not snap.exists:
            raise NotFoundError("Subscription", subscription_id)
        subscription = Subscription.from_document(snap.id, snap.data or {})
        self._remember(subscription)
        return subscription

    async def get_user_subscriptions(self, user_id: str) -> list[Subscription]:
        """All subscriptions of a user, newest start first."""
        key = keys.user_subscriptions_key(user_id)
        cached = self._cache.get(key, max_age_seconds=self._settings.subscriptions.user_subscriptions_ttl_seconds)
        if isinstance(cached, list):
            return list(cached)
        subscriptions = await self._query(
            "User subscriptions fetch",
            [("userId", "==", user_id)],
            [("startedAt", "desc")],
        )
        self._cache.set(key, subscriptions)
        return list(subscriptions)

    async def get_active_user_subscription(self, user_id: str) -> Subscription | None:
        """The user's active subscription with the latest expiry, if any."""
        key = keys.user_active_subscription_key(user_id)
        # None is a valid cached answer ("no active subscription").
        missing = object()
        cached = self._cache.get(key, missing, max_age_seconds=self._settings.subscriptions.active_subscription_ttl_seconds)
        if cached is not missing:
            return cached
        active = await self._query(
            "Active subscription fetch",
            [("userId", "==", user_id), ("status", "==", "active")],
        )
        active.sort(key=lambda s: s.expires_at, reverse=True)
        result = active[0] if active else None
        self._cache.set(key, result)
        return result

    async def has_active_subscription(self, user_id: str) -> bool:
        return await self.get_active_user_subscription(user_id) is not None

    async def get_expiring(self, within_days: int | None = None) -> list[Subscription]:
        """Active subscriptions expiring between now and `within_days` from now, soonest first."""
        if within_days is None:
            within_days = self._settings.subscriptions.expiring_within_days
        now = self._clock()
        horizon = now + timedelta(days=within_days)
        active = await self._query("Expiring subscriptions fetch", [("status", "==", "active")])
        expiring = [s for s in active if now <= s.expires_at <= horizon]
        expiring.sort(key=lambda s: s.expires_at)
        return expiring

    async def get_stats(self) -> dict[str, int]:
        """Subscription counts per status, plus the total."""
        subscriptions = await self._query("Subscription stats", [])
        counts = Counter(s.status for s in subscriptions)
        stats = {status: counts.get(status, 0) for status in SUBSCRIPTION_STATUSES}
        stats["total"] = len(subscriptions)
        return stats

    # ---- mutations ----

    async def create(
        self,
        user_id: str,
        plan_id: str,
        duration_days: int,
        status: SubscriptionStatus = "active",
    ) -> Subscription:
        if duration_days <= 0:
            raise ValidationError("duration_days must be positive")
        self._check_status(status)
        started_at = self._clock()
        data = {
            "userId": user_id,
            "planId": plan_id,
            "startedAt": started_at,
            "expiresAt": started_at + timedelta(days=duration_days),
            "status": status,
        }
        subscription_id = await self._call("Subscription create", self._store.add(self._collection, data))
        subscription = Subscription.from_document(subscription_id, data)
        self._remember(subscription)
        logger.info("Subscription %s created for user=%s plan=%s", subscription_id, user_id, plan_id)
        self._cache.invalidate_prefix(keys.user_subscriptions_prefix(user_id))
        await self._projector.apply(user_id, status)
        return subscription

    async def update_status(self, subscription_id: str, status: SubscriptionStatus) -> Subscription:
        self._check_status(status)
        return await self._update(subscription_id, {"status": status})

    async def renew(self, subscription_id: str, extension_days: int) -> Subscription:
        """Push `expiresAt` out by `extension_days` and force the subscription active."""
        if extension_days <= 0:
            raise ValidationError("extension_days must be positive")
        current = await self._fetch(subscription_id)
        return await self._update(
            subscription_id,
            {"expiresAt": current.expires_at + timedelta(days=extension_days), "status": "active"},
        )

    async def cancel(self, subscription_id: str) -> Subscription:
        return await self._update(subscription_id, {"status": "canceled"})

    # ---- helpers ----

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"Unknown subscription status: {status!r}")

    async def _fetch(self, subscription_id: str) -> Subscription:
        # Mutations read from the store, not the cache.
        self._cache.invalidate(keys.subscription_key(subscription_id))
        return await self.get(subscription_id)

    async def _update(self, subscription_id: str, partial: dict[str, Any]) -> Subscription:
        try:
            await self._call("Subscription update", self._store.update(self._collection, subscription_id, partial))
        except NotFoundError:
            raise NotFoundError("Subscription", subscription_id) from None
        updated = await self._fetch(subscription_id)
        logger.info("Subscription %s updated: %s", subscription_id, sorted(partial))
        self._cache.invalidate_prefix(keys.user_subscriptions_prefix(updated.user_id))
        await self._projector.apply(updated.user_id, updated.status)
        return updated
