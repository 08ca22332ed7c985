"""Tests for the injected TTL cache."""

from __future__ import annotations

from agentloop.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache: TTLCache[str] = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("k", "v")

    clock.now = 9
    assert cache.get("k") == "v"
    clock.now = 11
    assert cache.get("k") is None
    assert "k" not in cache
    assert cache.stats.expirations == 1


def test_oldest_entry_is_evicted_first() -> None:
    cache: TTLCache[int] = TTLCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert len(cache) == 2
    assert cache.stats.evictions == 1


def test_stats_and_invalidation() -> None:
    cache: TTLCache[int] = TTLCache()
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")

    assert cache.stats.to_dict()["hit_rate"] == 0.5
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0


def test_non_positive_ttl_disables_expiry() -> None:
    clock = _Clock()
    cache: TTLCache[str] = TTLCache(ttl_seconds=0, clock=clock)
    cache.set("k", "v")
    clock.now = 10_000

    assert cache.get("k") == "v"
