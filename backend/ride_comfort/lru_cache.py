from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedLRUCache(Generic[K, V]):
    """Fixed-capacity cache; the least recently touched key goes first.

    A hit on `get` and every `set` promote the key to most-recently-used.
    All order mutations happen under one lock, so the size never exceeds
    `capacity`, even transiently.
    """

    def __init__(self, capacity: int) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._lock = Lock()
        self._items: OrderedDict[K, V] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: K) -> V | None:
        with self._lock:
            if key not in self._items:
                self._misses += 1
                return None
            self._items.move_to_end(key)
            self._hits += 1
            return self._items[key]

    def set(self, key: K, value: V) -> K | None:
        """Insert or update `key`; returns the evicted key, if any."""
        evicted: K | None = None
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                self._items[key] = value
                return None
            if len(self._items) >= self._capacity:
                evicted, _ = self._items.popitem(last=False)
                self._evictions += 1
            self._items[key] = value
        return evicted

    def __contains__(self, key: object) -> bool:
        # Membership checks do not count as a touch.
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._items.keys())

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "capacity": self._capacity,
            }
