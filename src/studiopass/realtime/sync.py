"""
Push-driven cache reconciliation.

`RealtimeCacheSync.subscribe(key, ...)` opens a document channel on the store and
writes every pushed state into the shared `KeyedCache` under `key`:

- every push replaces the entry wholesale (no field merge);
- a "document does not exist" push stores a sentinel, never a missing entry:
  `None` for entities, `"free"` for a subscription status;
- a push for `user:<uid>` also refreshes `user:<uid>:subscriptionStatus`;
- pushes are applied in the order the store emits them;
- after `unsubscribe()` nothing more is written, including pushes the store had
  already queued.

`SyncConsumer` is the per-screen handle: it holds at most one subscription and
tears the previous one down before switching keys.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import pydantic

from studiopass.config.settings import Settings, get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import DomainError, TransientNetworkError, ValidationError
from studiopass.domain.models import AuthUser, Subscription, UserProfile
from studiopass.store.interfaces import AuthSession, DocumentSnapshot, DocumentStore, Unsubscribe

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Any], None]
ErrorCallback = Callable[[DomainError], None]


@dataclass(frozen=True)
class _Binding:
    """How one entity key maps onto a store document."""

    key: str
    collection: str
    doc_id: str
    kind: str  # "user" | "status" | "subscription"

    def decode(self, snapshot: DocumentSnapshot) -> Any:
        if self.kind == "status":
            if not snapshot.exists:
                return "free"
            return UserProfile.from_document(snapshot.id, snapshot.data or {}).subscription_status
        if not snapshot.exists:
            return None
        if self.kind == "user":
            return UserProfile.from_document(snapshot.id, snapshot.data or {})
        return Subscription.from_document(snapshot.id, snapshot.data or {})

    def fan_out(self, value: Any) -> list[tuple[str, Any]]:
        if self.kind != "user":
            return []
        status = value.subscription_status if isinstance(value, UserProfile) else "free"
        return [(keys.user_status_key(self.doc_id), status)]


class _ListenerState:
    __slots__ = ("active",)

    def __init__(self) -> None:
        self.active = True


class RealtimeCacheSync:
    def __init__(self, store: DocumentStore, cache: KeyedCache, settings: Settings | None = None) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._open: dict[str, int] = {}

    @property
    def cache(self) -> KeyedCache:
        return self._cache

    def open_subscriptions(self, key: str) -> int:
        """Number of live subscriptions for `key` across all consumers."""
        return self._open.get(key, 0)

    def bind(self, key: str) -> _Binding:
        """Resolve an entity key to its backing document.

        Raises:
            ValidationError: For keys that are not realtime-capable.
        """
        users = self._settings.subscriptions.users_collection
        subscriptions = self._settings.subscriptions.collection
        parts = key.split(":")
        if len(parts) == 2 and parts[0] == "user" and parts[1]:
            return _Binding(key=key, collection=users, doc_id=parts[1], kind="user")
        if len(parts) == 3 and parts[0] == "user" and parts[1] and parts[2] == "subscriptionStatus":
            return _Binding(key=key, collection=users, doc_id=parts[1], kind="status")
        if len(parts) == 2 and parts[0] == "subscription" and parts[1]:
            return _Binding(key=key, collection=subscriptions, doc_id=parts[1], kind="subscription")
        raise ValidationError(f"Unsupported realtime key: {key!r}")

    async def subscribe(
        self,
        key: str,
        on_change: ChangeListener | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        """Open a channel for `key` and wait for its first snapshot.

        The returned callable is synchronous and idempotent.

        Raises:
            ValidationError: `key` is not realtime-capable.
            TransientNetworkError: The channel failed or timed out before the first
                snapshot; the listener has already been released.
        """
        binding = self.bind(key)
        loop = asyncio.get_running_loop()
        first_snapshot: asyncio.Future[None] = loop.create_future()
        state = _ListenerState()
        store_unsubscribe: Unsubscribe | None = None

        def release() -> None:
            if not state.active:
                return
            state.active = False
            if store_unsubscribe is not None:
                store_unsubscribe()
            self._open[key] = self._open.get(key, 1) - 1
            if self._open[key] <= 0:
                del self._open[key]
            logger.debug("Realtime subscription closed: %s", key)

        def handle_error(exc: Exception) -> None:
            if not state.active:
                return
            error = exc if isinstance(exc, DomainError) else TransientNetworkError(f"Realtime channel {key}", exc)
            if not first_snapshot.done():
                first_snapshot.set_exception(error)
                return
            logger.warning("Realtime channel %s failed: %s", key, exc)
            # A broken channel delivers nothing more; release it so the consumer can resubscribe.
            release()
            if on_error is not None:
                on_error(error)

        def handle_snapshot(snapshot: DocumentSnapshot) -> None:
            if not state.active:
                logger.debug("Discarding late push for %s", key)
                return
            try:
                value = binding.decode(snapshot)
            except pydantic.ValidationError as exc:
                logger.warning("Malformed document pushed for %s: %s", key, exc.errors()[0]["msg"])
                handle_error(ValidationError(f"Malformed document for {key}"))
                return
            self._cache.set(key, value)
            for fan_key, fan_value in binding.fan_out(value):
                self._cache.set(fan_key, fan_value)
            if not first_snapshot.done():
                first_snapshot.set_result(None)
            if on_change is not None:
                on_change(value)

        self._open[key] = self._open.get(key, 0) + 1
        try:
            store_unsubscribe = self._store.subscribe(binding.collection, binding.doc_id, handle_snapshot, handle_error)
        except Exception as exc:
            release()
            raise TransientNetworkError(f"Realtime subscribe {key}", exc) from exc

        try:
            await asyncio.wait_for(first_snapshot, timeout=self._settings.realtime.handshake_timeout_seconds)
        except asyncio.TimeoutError as exc:
            release()
            raise TransientNetworkError(f"Realtime subscribe {key}", exc) from exc
        except asyncio.CancelledError:
            release()
            raise
        except DomainError:
            release()
            raise

        logger.debug("Realtime subscription open: %s", key)
        return release

    def consumer(self) -> "SyncConsumer":
        return SyncConsumer(self)

    async def follow_session(
        self,
        auth: AuthSession,
        on_change: ChangeListener | None = None,
        on_error: ErrorCallback | None = None,
    ) -> "SessionFollower":
        """Keep a consumer subscribed to `user:<uid>` of whoever is signed in."""
        follower = SessionFollower(self, auth, on_change=on_change, on_error=on_error)
        await follower.start()
        return follower


class SyncConsumer:
    """At most one active subscription; switching keys releases the old one first."""

    def __init__(self, sync: RealtimeCacheSync) -> None:
        self._sync = sync
        self._key: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._generation = 0

    @property
    def key(self) -> str | None:
        return self._key

    async def subscribe(
        self,
        key: str,
        on_change: ChangeListener | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        if key == self._key and self._unsubscribe is not None:
            return
        self.release()
        self._generation += 1
        generation = self._generation
        unsubscribe = await self._sync.subscribe(key, on_change, on_error)
        if generation != self._generation:
            # Superseded (or released) while the handshake was pending.
            unsubscribe()
            return
        self._key = key
        self._unsubscribe = unsubscribe

    def release(self) -> None:
        self._generation += 1
        unsubscribe, self._unsubscribe, self._key = self._unsubscribe, None, None
        if unsubscribe is not None:
            unsubscribe()

    async def __aenter__(self) -> "SyncConsumer":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


class SessionFollower:
    """Re-points a `SyncConsumer` at the signed-in user's record on every session change."""

    def __init__(
        self,
        sync: RealtimeCacheSync,
        auth: AuthSession,
        *,
        on_change: ChangeListener | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._consumer = sync.consumer()
        self._auth = auth
        self._on_change = on_change
        self._on_error = on_error
        self._stop_listening: Unsubscribe | None = None
        self._pending: asyncio.Task[None] | None = None

    @property
    def key(self) -> str | None:
        return self._consumer.key

    async def start(self) -> None:
        self._stop_listening = self._auth.on_change(self._session_changed)
        await self._follow(self._auth.current_user)

    async def settle(self) -> None:
        """Wait for the switch triggered by the latest session change."""
        if self._pending is not None:
            await self._pending

    async def _follow(self, user: AuthUser | None) -> None:
        if user is None:
            self._consumer.release()
            return
        try:
            await self._consumer.subscribe(keys.user_key(user.uid), self._on_change, self._on_error)
        except DomainError as exc:
            logger.warning("Could not follow user %s: %s", user.uid, exc)
            if self._on_error is not None:
                self._on_error(exc)

    def _session_changed(self, user: AuthUser | None) -> None:
        if user is None:
            self._consumer.release()
            return
        self._pending = asyncio.ensure_future(self._follow(user))

    def close(self) -> None:
        if self._stop_listening is not None:
            self._stop_listening()
            self._stop_listening = None
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._consumer.release()

    async def __aenter__(self) -> "SessionFollower":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
