"""Bounded in-memory completion cache with per-entry TTL.

Entries expire lazily: an expired entry is dropped the next time it is
read. ``sweep()`` reclaims entries for keys that are never requested again.
When the store is full the least-recently-used entry is evicted.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A single cached value and its expiry metadata."""

    value: T
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Return True once the entry has outlived its TTL."""
        return now >= self.created_at + self.ttl


class TTLCache(Generic[T]):
    """LRU cache with a maximum size and a default TTL.

    Thread-safe. The clock is injectable so expiry can be tested without
    sleeping.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        """Return the live entry for key, or None on a miss.

        A hit marks the entry as most recently used.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> CacheEntry[T]:
        """Store value under key, evicting the oldest entries when full."""
        entry = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=self._ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)
        return entry

    def delete(self, key: str) -> bool:
        """Remove key if present. Returns True if something was removed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
