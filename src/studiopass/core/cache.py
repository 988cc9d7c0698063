"""
Shared keyed client cache.

This is the only shared mutable state of a client instance:
- One entry per key (e.g. `user:<uid>`, `studios:list`).
- Writes replace the whole value and bump the entry version; there are no
  field-level patches, so concurrent writers (push channel vs. optimistic local
  writes) resolve by "last write wins".
- Readers may observe a key via `subscribe()` and are notified on every write.

Writers are the realtime sync layer (pushes) and the mutation layer (optimistic
write-through). Everyone else only reads.
"""

from __future__ import annotations

import contextvars
import itertools
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator

logger = logging.getLogger(__name__)

Listener = Callable[["CacheEntry"], None]


@dataclass(frozen=True)
class CacheEntry:
    """An immutable snapshot of one cache slot."""

    key: str
    value: Any
    version: int
    updated_at_monotonic: float


@dataclass
class CacheStats:
    """Per-request cache usage stats."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    sets: int = 0
    invalidations: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "hits": int(self.hits),
            "misses": int(self.misses),
            "expired": int(self.expired),
            "sets": int(self.sets),
            "invalidations": int(self.invalidations),
        }


_cache_stats_var: contextvars.ContextVar[CacheStats | None] = contextvars.ContextVar(
    "studiopass_cache_stats", default=None
)


def _stats() -> CacheStats | None:
    return _cache_stats_var.get()


@contextmanager
def record_cache_stats() -> Iterator[CacheStats]:
    """Capture cache stats within the current context (thread/task-safe)."""

    stats = CacheStats()
    token = _cache_stats_var.set(stats)
    try:
        yield stats
    finally:
        _cache_stats_var.reset(token)


class KeyedCache:
    """An in-memory cache keyed by string, with whole-value writes and change listeners."""

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        # One counter for all keys, so a re-populated key never reuses an old version.
        self._versions = itertools.count(1)
        self._listeners: dict[str, list[Listener]] = {}
        self._clock = clock

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def get_entry(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def get(self, key: str, default: Any = None, *, max_age_seconds: float | None = None) -> Any:
        """Return the cached value, or `default` on a miss or when older than `max_age_seconds`."""
        entry = self._entries.get(key)
        st = _stats()
        if entry is None:
            if st:
                st.misses += 1
            return default
        if max_age_seconds is not None and self._now() - entry.updated_at_monotonic > max_age_seconds:
            if st:
                st.misses += 1
                st.expired += 1
            return default
        if st:
            st.hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> CacheEntry:
        """Replace the value stored under `key` and notify its listeners."""
        entry = CacheEntry(key=key, value=value, version=next(self._versions), updated_at_monotonic=self._now())
        self._entries[key] = entry
        st = _stats()
        if st:
            st.sets += 1
        for listener in list(self._listeners.get(key, ())):
            try:
                listener(entry)
            except Exception:
                logger.exception("Cache listener for %s failed", key)
        return entry

    def invalidate(self, key: str) -> bool:
        """Drop `key` so the next read goes back to the source. Returns True if it was present."""
        removed = self._entries.pop(key, None) is not None
        if removed:
            st = _stats()
            if st:
                st.invalidations += 1
        return removed

    def invalidate_prefix(self, prefix: str, *, keep: str | None = None) -> int:
        """Drop every key starting with `prefix` (except those starting with `keep`).

        Returns how many keys were dropped.
        """
        doomed = [k for k in self._entries if k.startswith(prefix) and not (keep and k.startswith(keep))]
        for key in doomed:
            self.invalidate(key)
        if doomed:
            logger.debug("Invalidated %d cache keys under %s", len(doomed), prefix)
        return len(doomed)

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Observe writes to `key`. Returns an idempotent unsubscribe callable."""
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def listener_count(self, key: str) -> int:
        return len(self._listeners.get(key, ()))

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        max_age_seconds: float | None = None,
    ) -> Any:
        """Return the cached value, or await `loader()` and store its result.

        Loader failures propagate unchanged and leave the cache untouched.
        """
        sentinel = object()
        cached = self.get(key, sentinel, max_age_seconds=max_age_seconds)
        if cached is not sentinel:
            return cached
        value = await loader()
        self.set(key, value)
        return value
