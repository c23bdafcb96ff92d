"""Thread-safe TTL + LRU cache for match results.

Keys include the snapshot version, so any catalog, alias or training change
makes old entries unreachable; the TTL bounds drift from time-based rules
(training windows, recency decay).
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

from ..observability.metrics import match_cache_total

V = TypeVar("V")


class MatchResultCache(Generic[V]):
    """Least-recently-used cache with per-entry expiry.

    Example:
        cache = MatchResultCache(ttl_seconds=600, max_entries=1000)
        cache.put(key, outcome)
        cache.get(key)  # outcome, or None once expired/evicted
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cache.

        Args:
            ttl_seconds: Entry lifetime; 0 disables caching
            max_entries: Capacity before least-recently-used eviction
            clock: Monotonic time source
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value or None (miss, expired or disabled)."""
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                match_cache_total.labels(result="miss").inc()
                return None

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                match_cache_total.labels(result="miss").inc()
                return None

            self._entries.move_to_end(key)
            match_cache_total.labels(result="hit").inc()
            return value

    def put(self, key: Hashable, value: V) -> None:
        """Store a value, evicting the least recently used entries."""
        if not self.enabled:
            return

        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
