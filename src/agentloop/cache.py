"""Small TTL cache injected into tools that memoise responses."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Hashable, TypeVar

__all__ = ["CacheStats", "TTLCache"]

LOGGER = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheStats:
    """Counters for cache operations."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": round(self.hit_rate, 3),
        }


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    created_at: float


@dataclass
class TTLCache(Generic[V]):
    """Bounded mapping whose entries expire ``ttl_seconds`` after insertion.

    When full, the oldest entry is evicted first. ``ttl_seconds <= 0`` disables
    expiry. ``clock`` is injectable for tests.

    Attributes:
        ttl_seconds: Entry lifetime.
        max_entries: Capacity before eviction.
        clock: Monotonic time source.
    """

    ttl_seconds: float = 300.0
    max_entries: int = 128
    clock: Callable[[], float] = time.monotonic
    stats: CacheStats = field(default_factory=CacheStats)
    _entries: "OrderedDict[Hashable, _Entry[V]]" = field(default_factory=OrderedDict, init=False, repr=False)

    def get(self, key: Hashable) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None
        if self._expired(entry):
            del self._entries[key]
            self.stats.expirations += 1
            self.stats.misses += 1
            return None
        self.stats.hits += 1
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, created_at=self.clock())
        while len(self._entries) > max(1, self.max_entries):
            evicted, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            LOGGER.debug("Evicted cache entry %r", evicted)

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not self._expired(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: _Entry[V]) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return self.clock() - entry.created_at > self.ttl_seconds
