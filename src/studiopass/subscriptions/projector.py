"""
Subscription status projection.

`users/<uid>.subscriptionStatus` is a denormalized copy of the user's subscription
state. Only this module writes it. The Subscription records stay the source of
truth: a projection that fails is logged and left for `resync()` (or the next
mutation) to heal, it never fails the triggering mutation.

Mapping:

    active   -> active
    expired  -> expired
    canceled -> free
    pending  -> free
    (other)  -> free
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

import pydantic

from studiopass.config.settings import Settings, get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import DomainError, NotFoundError, ProjectionWriteError, TransientNetworkError
from studiopass.core.time import now_in
from studiopass.domain.models import Subscription, UserProfile, UserSubscriptionStatus, UserType
from studiopass.store.interfaces import DocumentStore

logger = logging.getLogger(__name__)

_PROJECTION: dict[str, UserSubscriptionStatus] = {"active": "active", "expired": "expired"}
_PRIORITY: dict[str, int] = {"free": 0, "expired": 1, "active": 2}
_USER_TYPES: dict[str, UserType] = {"active": "premium", "expired": "expired"}


def project(subscription_status: str | None) -> UserSubscriptionStatus:
    return _PROJECTION.get(subscription_status or "", "free")


def derive(subscriptions: Iterable[Subscription]) -> UserSubscriptionStatus:
    """Collapse all of a user's subscriptions into one status (active > expired > free)."""
    best: UserSubscriptionStatus = "free"
    for sub in subscriptions:
        status = project(sub.status)
        if _PRIORITY[status] > _PRIORITY[best]:
            best = status
    return best


def user_type(status: str | None) -> UserType:
    return _USER_TYPES.get(status or "", "free")


class SubscriptionStatusProjector:
    def __init__(
        self,
        store: DocumentStore,
        cache: KeyedCache,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: now_in(self._settings.app.timezone))

    project = staticmethod(project)
    derive = staticmethod(derive)
    user_type = staticmethod(user_type)

    async def apply(self, user_id: str, subscription_status: str | None) -> bool:
        """Write the projected status to the user record and refresh the user's cache keys.

        Returns False (after logging a `ProjectionWriteError`) if the write fails.
        """
        status = project(subscription_status)
        users = self._settings.subscriptions.users_collection
        fields = {"subscriptionStatus": status, "updatedAt": self._clock()}
        try:
            try:
                await self._store.update(users, user_id, fields)
            except NotFoundError:
                # First projection for this user creates the record.
                await self._store.set(users, user_id, fields)
        except Exception as exc:
            error = ProjectionWriteError(user_id, exc)
            logger.error("%s user=%s status=%s cause=%s", error, user_id, status, exc)
            return False

        self._cache.set(keys.user_status_key(user_id), status)
        self._cache.invalidate(keys.user_key(user_id))
        self._cache.invalidate_prefix(keys.user_subscriptions_prefix(user_id))
        logger.info("Projected subscription status %r -> %r for user=%s", subscription_status, status, user_id)
        return True

    async def resync(self, user_id: str) -> bool:
        """Re-derive the user's status from all of their subscriptions and apply it."""
        collection = self._settings.subscriptions.collection
        try:
            snapshots = await self._store.query(collection, [("userId", "==", user_id)])
        except DomainError:
            raise
        except Exception as exc:
            raise TransientNetworkError("Subscription resync", exc) from exc

        subscriptions = []
        for snap in snapshots:
            try:
                subscriptions.append(Subscription.from_document(snap.id, snap.data or {}))
            except pydantic.ValidationError:
                logger.warning("Skipping malformed subscription document %s", snap.id)
        return await self.apply(user_id, derive(subscriptions))

    async def read_status(self, user_id: str) -> UserSubscriptionStatus:
        """Current status: cache, then the user record, then "free"."""
        cached = self._cache.get(keys.user_status_key(user_id))
        if cached in _PRIORITY:
            return cached

        users = self._settings.subscriptions.users_collection
        try:
            snap = await self._store.get(users, user_id)
        except DomainError:
            raise
        except Exception as exc:
            raise TransientNetworkError("User status read", exc) from exc

        status: UserSubscriptionStatus = "free"
        if snap.exists:
            try:
                status = UserProfile.from_document(snap.id, snap.data or {}).subscription_status
            except pydantic.ValidationError:
                logger.warning("User %s has an unreadable subscriptionStatus; treating as free", user_id)
        self._cache.set(keys.user_status_key(user_id), status)
        return status
