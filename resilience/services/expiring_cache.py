"""
Expiring cache for remote API responses.
Time-to-live only: entries are never evicted for size, only for age.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from resilience.utils.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached value; refreshed by overwriting, never mutated."""

    key: str
    value: Any
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl


@dataclass
class CacheStats:
    """Cache performance statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ExpiringCache:
    """
    Key -> value store with per-entry TTL.

    A read returns the value only while ``now - stored_at < ttl``. An expired
    entry is removed on the read that finds it; remaining expired entries are
    swept on the next write.
    """

    def __init__(self, default_ttl: float = 300.0, clock: Optional[Clock] = None):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock or MonotonicClock()
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._lock = threading.RLock()

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if not entry.is_fresh(self._clock.now()):
                del self._entries[key]
                self._stats.evictions += 1
                self._stats.misses += 1
                logger.debug("Cache entry expired: %s", key)
                return None
            self._stats.hits += 1
            return entry

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Store ``value`` under ``key`` with ``stored_at = now``."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            now = self._clock.now()
            self._sweep(now)
            entry = CacheEntry(key=key, value=value, stored_at=now, ttl=ttl)
            self._entries[key] = entry
            return entry

    def clear(self, key: Optional[str] = None) -> int:
        """Remove one entry or all entries; returns the number removed."""
        with self._lock:
            if key is not None:
                return 1 if self._entries.pop(key, None) is not None else 0
            count = len(self._entries)
            self._entries.clear()
            if count:
                logger.info("Cleared %d cache entries", count)
            return count

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_fresh(self._clock.now())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            now = self._clock.now()
            return [k for k, e in self._entries.items() if e.is_fresh(now)]

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                entry_count=len(self._entries),
            )

    def _sweep(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for k in expired:
            del self._entries[k]
        if expired:
            self._stats.evictions += len(expired)
            logger.debug("Swept %d expired cache entries", len(expired))
