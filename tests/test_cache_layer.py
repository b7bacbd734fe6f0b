from __future__ import annotations

import cache_layer
from cache_layer import cache_clear, cache_get_or_set, cache_stats, invalidate_user_display, user_display_key


def test_cache_exposes_only_get_or_set_and_delete():
    assert not hasattr(cache_layer._InMemoryTTLCache, "get")
    assert not hasattr(cache_layer._InMemoryTTLCache, "set")


def test_get_or_set_caches_until_invalidated():
    cache_clear()
    calls = []

    def _load():
        calls.append(1)
        return "Ada Lovelace"

    key = user_display_key("USR-1")
    assert cache_get_or_set(key, _load) == "Ada Lovelace"
    assert cache_get_or_set(key, _load) == "Ada Lovelace"
    assert len(calls) == 1
    assert cache_stats()["hits"] == 1
    assert cache_stats()["misses"] == 1

    invalidate_user_display("USR-1")
    assert cache_get_or_set(key, _load) == "Ada Lovelace"
    assert len(calls) == 2


def test_none_results_are_not_cached():
    cache_clear()
    calls = []

    def _load():
        calls.append(1)
        return None

    assert cache_get_or_set("missing", _load) is None
    assert cache_get_or_set("missing", _load) is None
    assert len(calls) == 2
    assert cache_stats()["size"] == 0
