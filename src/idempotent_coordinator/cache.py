"""Bounded least-recently-used cache for idempotency records.

The cache is a per-process latency optimization and is never authoritative:
callers must check every hit against the current time and must never use it
to decide cross-process uniqueness.

Thread Safety:
    A single ``threading.Lock`` guards the ordering structure, so the cache
    can be shared by threads and by coroutines on one event loop. No
    operation awaits while holding the lock.

Examples:
    >>> cache = LRUCache[str, int](capacity=2)
    >>> cache.set("a", 1)
    >>> cache.set("b", 2)
    >>> cache.try_get("a")
    (True, 1)
    >>> cache.set("c", 3)  # evicts "b", the least recently used
    >>> cache.try_get("b")
    (False, None)
"""

import threading
from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Bounded map evicting the least-recently-used entry on overflow.

    Attributes:
        capacity: Maximum number of entries kept.
    """

    def __init__(self, capacity: int = 256) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()

    def try_get(self, key: K) -> tuple[bool, V | None]:
        """Look up a key, marking it as most recently used on a hit."""
        with self._lock:
            if key not in self._entries:
                return False, None
            self._entries.move_to_end(key)
            return True, self._entries[key]

    def set(self, key: K, value: V) -> None:
        """Insert or replace a value, evicting the LRU entry beyond capacity."""
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def remove(self, key: K) -> None:
        """Remove a key if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
