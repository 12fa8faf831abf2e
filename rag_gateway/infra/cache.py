"""In-process TTL cache with lazy eviction."""

import threading
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Whole-value cache whose entries expire after a fixed TTL.

    Expired entries are evicted when they are looked up, not by a sweeper.
    Writes replace the whole value, so concurrent writers are last-writer-wins.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, Tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if absent or expired (expired entries are dropped)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: K, value: V) -> None:
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._entries[key] = (value, expires_at)

    def invalidate(self, key: K) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
