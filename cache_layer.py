from __future__ import annotations

import os
import threading
from typing import Any, Callable

from cachetools import TTLCache


USER_DISPLAY_PREFIX = "USER_DISPLAY:"


class _InMemoryTTLCache:
    def __init__(self):
        ttl = int(os.getenv("CACHE_TTL_SECONDS", "60") or "60")
        max_items = int(os.getenv("CACHE_MAX_ITEMS", "10000") or "10000")
        ttl = max(1, min(3600, ttl))
        max_items = max(100, min(500_000, max_items))
        self._cache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            val = self._cache.get(key)
            if val is not None:
                self._hits += 1
                return val
            self._misses += 1
        # Compute outside the lock; a concurrent writer for the same key wins.
        computed = factory()
        if computed is None:
            return None
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            self._cache[key] = computed
        return computed

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0.0
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
            }


_cache = _InMemoryTTLCache()


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    """Returns the cached value or computes, caches and returns it. `None` results are not cached."""
    return _cache.get_or_set(key, factory)


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()


def user_display_key(user_id: str) -> str:
    return f"{USER_DISPLAY_PREFIX}{str(user_id or '').strip()}"


def invalidate_user_display(user_id: str) -> None:
    _cache.delete(user_display_key(user_id))
