"""Bounded cache with age-based eviction.

Backs both the wallet monitor's seen-signature set and the valuation cache.
Entries expire after ``ttl_seconds``; when ``capacity`` is exceeded the oldest
entries are dropped first.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Iterator


class BoundedTTLCache:
    def __init__(
        self,
        capacity: int | None,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def _evict_expired(self):
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]

    def set(self, key: Hashable, value: Any = True):
        self._evict_expired()
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self._clock(), value)
        if self.capacity is not None:
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return default
        return value

    def age_of(self, key: Hashable) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry[0]

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    def __iter__(self) -> Iterator[Hashable]:
        self._evict_expired()
        return iter(list(self._entries.keys()))

    def clear(self):
        self._entries.clear()
