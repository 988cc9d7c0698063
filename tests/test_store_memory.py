import asyncio

import pytest

from studiopass.core.errors import NotFoundError
from studiopass.domain.models import AuthUser
from studiopass.store.memory import InMemoryAuthSession, InMemoryDocumentStore


def _seeded() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    docs = {
        "c": {"name": "Gamma", "tags": ["sauna", "pool"]},
        "a": {"name": "Alpha", "rating": 4.0, "tags": ["sauna"]},
        "b": {"name": "Beta", "rating": 4.5, "tags": []},
        "d": {"name": "Delta", "rating": "n/a"},
    }
    for doc_id, data in docs.items():
        asyncio.run(store.set("studios", doc_id, data))
    return store


def test_query_filters_order_and_limit():
    store = _seeded()

    def ids(**kwargs):
        return [s.id for s in asyncio.run(store.query("studios", **kwargs))]

    assert ids(filters=[("rating", ">=", 4.2)]) == ["b"]
    # Documents without the field, or with a mismatched type, never match.
    assert ids(filters=[("rating", "<", 5)]) == ["a", "b"]
    assert ids(filters=[("tags", "array-contains", "sauna")]) == ["c", "a"]
    assert ids(order_by=[("name", "desc")]) == ["c", "d", "b", "a"]
    # Missing sort fields go last.
    assert ids(order_by=[("rating", "desc")], filters=[("tags", "array-contains", "sauna")]) == ["a", "c"]
    assert ids(order_by=[("name", "asc")], limit=2) == ["a", "b"]


def test_update_requires_an_existing_document():
    store = _seeded()
    asyncio.run(store.update("studios", "a", {"rating": 5.0}))
    assert asyncio.run(store.get("studios", "a")).data["rating"] == 5.0
    with pytest.raises(NotFoundError):
        asyncio.run(store.update("studios", "zzz", {"rating": 1.0}))


def test_returned_data_is_a_copy():
    store = _seeded()
    snap = asyncio.run(store.get("studios", "a"))
    snap.data["tags"].append("mutated")
    assert asyncio.run(store.get("studios", "a")).data["tags"] == ["sauna"]


def test_injected_failure_fires_once():
    store = _seeded()
    store.inject_failure("get", ConnectionError("offline"), collection="studios")
    with pytest.raises(ConnectionError):
        asyncio.run(store.get("studios", "a"))
    assert asyncio.run(store.get("studios", "a")).exists


def test_pushes_arrive_in_write_order():
    async def scenario():
        store = InMemoryDocumentStore()
        seen = []
        unsubscribe = store.subscribe("users", "u1", lambda snap: seen.append(snap.data))
        await store.set("users", "u1", {"v": 1})
        await store.update("users", "u1", {"v": 2})
        await store.delete("users", "u1")
        await asyncio.sleep(0)
        unsubscribe()
        unsubscribe()
        return store, seen

    store, seen = asyncio.run(scenario())
    assert seen == [None, {"v": 1}, {"v": 2}, None]
    assert store.listener_count("users", "u1") == 0


def test_auth_session_notifies_listeners():
    session = InMemoryAuthSession()
    seen = []
    unsubscribe = session.on_change(seen.append)

    session.sign_in(AuthUser(uid="u1"))
    session.sign_out()
    unsubscribe()
    session.sign_in(AuthUser(uid="u2"))

    assert [u.uid if u else None for u in seen] == ["u1", None]
    assert session.current_user.uid == "u2"
