"""
In-memory reference collaborators.

`InMemoryDocumentStore` behaves like a hosted document database seen from one
client: writes are applied immediately, and subscribers receive pushes
asynchronously (scheduled on the running event loop), in write order per
document. Because delivery is scheduled, a push that was already queued when a
listener unsubscribed still arrives; consumers must discard it themselves.

`InMemoryAuthSession` is a minimal signed-in-user holder with change listeners.
Both are used by the API wiring, the CLI and the tests.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any, Callable

from studiopass.core.errors import NotFoundError
from studiopass.domain.models import AuthUser
from studiopass.store.interfaces import (
    AuthSession,
    DocumentSnapshot,
    DocumentStore,
    ErrorListener,
    Filter,
    OrderBy,
    SnapshotListener,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


def _matches(data: dict[str, Any], flt: Filter) -> bool:
    field, op, expected = flt
    if field not in data:
        return False
    actual = data[field]
    try:
        if op == "==":
            return actual == expected
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
        if op == "array-contains":
            return isinstance(actual, list) and expected in actual
    except TypeError:
        # Mixed types never match, like a typed index would.
        return False
    raise ValueError(f"Unsupported filter operator: {op!r}")


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[tuple[str, str], list[tuple[SnapshotListener, ErrorListener | None]]] = {}
        self._failures: dict[tuple[str, str | None], list[Exception]] = {}

    # ---- fault injection (tests) ----

    def inject_failure(self, operation: str, exc: Exception, *, collection: str | None = None) -> None:
        """Make the next `operation` (optionally on `collection`) raise `exc` once."""
        self._failures.setdefault((operation, collection), []).append(exc)

    def _maybe_fail(self, operation: str, collection: str) -> None:
        for key in ((operation, collection), (operation, None)):
            pending = self._failures.get(key)
            if pending:
                raise pending.pop(0)

    # ---- push delivery ----

    def _deliver(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback(*args)
            return
        loop.call_soon(callback, *args)

    def _snapshot(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data = self._collections.get(collection, {}).get(doc_id)
        return DocumentSnapshot(id=doc_id, data=copy.deepcopy(data) if data is not None else None)

    def _notify(self, collection: str, doc_id: str) -> None:
        listeners = self._listeners.get((collection, doc_id))
        if not listeners:
            return
        snapshot = self._snapshot(collection, doc_id)
        for on_change, _ in list(listeners):
            self._deliver(on_change, snapshot)

    def fail_subscribers(self, collection: str, doc_id: str, exc: Exception) -> None:
        """Deliver `exc` to every error listener of a document (simulates a broken channel)."""
        for _, on_error in list(self._listeners.get((collection, doc_id), ())):
            if on_error is not None:
                self._deliver(on_error, exc)

    # ---- DocumentStore ----

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        self._maybe_fail("get", collection)
        return self._snapshot(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        self._maybe_fail("query", collection)
        docs = [
            (doc_id, data)
            for doc_id, data in self._collections.get(collection, {}).items()
            if all(_matches(data, f) for f in (filters or []))
        ]
        # Apply sort keys last-to-first so the first key dominates (stable sort).
        for field, direction in reversed(order_by or []):
            present = [d for d in docs if d[1].get(field) is not None]
            missing = [d for d in docs if d[1].get(field) is None]
            present.sort(key=lambda d: d[1][field], reverse=direction == "desc")
            docs = present + missing
        if limit is not None:
            docs = docs[: max(0, int(limit))]
        return [DocumentSnapshot(id=doc_id, data=copy.deepcopy(data)) for doc_id, data in docs]

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        self._maybe_fail("add", collection)
        doc_id = uuid.uuid4().hex[:20]
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        self._notify(collection, doc_id)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._maybe_fail("set", collection)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        self._notify(collection, doc_id)

    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]) -> None:
        self._maybe_fail("update", collection)
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(partial))
        self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._maybe_fail("delete", collection)
        if self._collections.get(collection, {}).pop(doc_id, None) is not None:
            self._notify(collection, doc_id)

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        on_change: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> Unsubscribe:
        pair = (on_change, on_error)
        self._listeners.setdefault((collection, doc_id), []).append(pair)
        self._deliver(on_change, self._snapshot(collection, doc_id))

        def unsubscribe() -> None:
            listeners = self._listeners.get((collection, doc_id))
            if listeners and pair in listeners:
                listeners.remove(pair)

        return unsubscribe

    def listener_count(self, collection: str, doc_id: str) -> int:
        return len(self._listeners.get((collection, doc_id), ()))


class InMemoryAuthSession(AuthSession):
    def __init__(self, user: AuthUser | None = None) -> None:
        self._user = user
        self._listeners: list[Callable[[AuthUser | None], None]] = []

    @property
    def current_user(self) -> AuthUser | None:
        return self._user

    def sign_in(self, user: AuthUser) -> None:
        self._set(user)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, user: AuthUser | None) -> None:
        previous = self._user.uid if self._user else None
        self._user = user
        logger.info("Session changed: %s -> %s", previous, user.uid if user else None)
        for listener in list(self._listeners):
            listener(user)

    def on_change(self, listener: Callable[[AuthUser | None], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
