"""
In-memory cache of finished job results.

Entries expire after a TTL; when full, the oldest inserted entry is
evicted first. Safe to use from concurrent jobs.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    created_at: float
    expires_at: float


class ResultCache(Generic[V]):
    """
    TTL cache with oldest-first eviction.

    Example:
        cache = ResultCache(ttl_seconds=3600, max_entries=1000)
        cache.set(job_id, response)
        cache.get(job_id)   # response, or None once expired/evicted
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            ttl_seconds: Lifetime of an entry
            max_entries: Capacity before oldest-first eviction
            clock: Time source in seconds
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        """Get a live entry; expired entries are dropped on access."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: V) -> None:
        """Insert or replace an entry, evicting the oldest when full."""
        now = self._clock()
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Cache full, evicted {evicted}")
            self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + self.ttl_seconds)

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def evict_expired(self) -> int:
        """Drop all expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.info(f"Result cache cleared ({count} entries)")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
