"""
In-memory TTL store backing the catalog cache.
"""

import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TYPE_CHECKING, TypeVar

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

V = TypeVar("V")

DEFAULT_STALE_GRACE_SECONDS = 3600.0


class Freshness(str, Enum):
    """Lifecycle stage of a cache entry relative to its TTL."""
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with its write time (monotonic clock) and TTL."""

    key: str
    value: V
    written_at: float
    ttl_seconds: float
    size: int = 0
    last_accessed: float = 0.0
    hits: int = 0

    def age(self, now: float) -> float:
        return now - self.written_at

    def freshness(self, now: float, grace_seconds: float) -> Freshness:
        age = self.age(now)
        if age < self.ttl_seconds:
            return Freshness.FRESH
        if age < self.ttl_seconds + grace_seconds:
            return Freshness.STALE
        return Freshness.EXPIRED


@dataclass
class CacheStatsSnapshot:
    """Point-in-time view of the store for observability."""

    size: int
    memory_usage_estimate: int
    fresh: int
    stale: int
    expired: int
    hits: int
    misses: int
    evictions: int
    total_requests: int

    @property
    def freshness_buckets(self) -> Dict[str, int]:
        return {"fresh": self.fresh, "stale": self.stale, "expired": self.expired}

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["freshness"] = self.freshness_buckets
        return payload


class CacheStore(Generic[V]):
    """Key to entry mapping with lazy TTL eviction.

    ``get`` only ever returns fresh values. Entries past their TTL stay
    available to ``get_stale`` for ``stale_grace_seconds`` and are deleted on
    the first access after that window. There is no background sweep.
    """

    def __init__(
        self,
        *,
        stale_grace_seconds: float = DEFAULT_STALE_GRACE_SECONDS,
        max_entries: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.stale_grace_seconds = max(0.0, stale_grace_seconds)
        self.max_entries = max_entries
        self.metrics = metrics
        self.logger = get_logger("catalog.cache_store")
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry[V]] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_requests = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[V]:
        """Return the value for ``key`` if it is fresh, else ``None``."""
        self._total_requests += 1
        try:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
                self.logger.debug("Cache miss", key=key, reason="not_found")
                return None

            now = self._clock()
            if entry.freshness(now, self.stale_grace_seconds) is not Freshness.FRESH:
                self._misses += 1
                self.logger.debug("Cache miss", key=key, reason="expired", age=round(entry.age(now), 1))
                return None

            entry.hits += 1
            entry.last_accessed = now
            self._hits += 1
            self.logger.debug("Cache hit", key=key, age=round(entry.age(now), 1))
            return entry.value
        except Exception as exc:  # a broken entry is a miss, never an error
            self.logger.error("Cache get error", key=key, error=str(exc))
            self._entries.pop(key, None)
            self._misses += 1
            return None

    def get_stale(self, key: str) -> Optional[V]:
        """Return the value for ``key`` if it is past its TTL but within the grace window."""
        try:
            entry = self._lookup(key)
            if entry is None:
                return None
            if entry.freshness(self._clock(), self.stale_grace_seconds) is Freshness.STALE:
                return entry.value
            return None
        except Exception as exc:
            self.logger.error("Cache stale lookup error", key=key, error=str(exc))
            return None

    def is_fresh(self, key: str) -> bool:
        """Freshness check that leaves hit/miss counters alone."""
        entry = self._entries.get(key)
        return entry is not None and entry.freshness(self._clock(), self.stale_grace_seconds) is Freshness.FRESH

    def peek(self, key: str) -> Optional[CacheEntry[V]]:
        """Return the raw entry without touching counters or evicting."""
        return self._entries.get(key)

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        """Insert or overwrite ``key``; the write time is taken from the store clock."""
        try:
            now = self._clock()
            if key not in self._entries:
                self._ensure_capacity(now)

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                written_at=now,
                ttl_seconds=float(ttl_seconds),
                size=self._estimate_size(value),
                last_accessed=now,
            )
            self.logger.debug("Cached value", key=key, ttl=ttl_seconds)
            self._report_size()
        except Exception as exc:
            self.logger.error("Cache set error", key=key, error=str(exc))

    def delete(self, key: str) -> bool:
        """Remove exactly ``key``; True if an entry was removed."""
        if key not in self._entries:
            return False
        self._remove(key, "invalidated")
        self.logger.info("Deleted cache entry", key=key)
        return True

    def invalidate(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            self._remove(key, "invalidated")

        if keys:
            self.logger.info("Invalidated cache entries", prefix=prefix, keys_count=len(keys))
        return len(keys)

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_requests = 0
        self._report_size()

    def keys(self) -> List[str]:
        return list(self._entries)

    def stats(self) -> CacheStatsSnapshot:
        """Count entries per freshness bucket; has no effect on the entries."""
        now = self._clock()
        buckets = {stage: 0 for stage in Freshness}
        memory = 0
        for entry in self._entries.values():
            buckets[entry.freshness(now, self.stale_grace_seconds)] += 1
            memory += entry.size

        return CacheStatsSnapshot(
            size=len(self._entries),
            memory_usage_estimate=memory,
            fresh=buckets[Freshness.FRESH],
            stale=buckets[Freshness.STALE],
            expired=buckets[Freshness.EXPIRED],
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            total_requests=self._total_requests,
        )

    def _lookup(self, key: str) -> Optional[CacheEntry[V]]:
        """Fetch an entry, deleting it first if it is past the grace window."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.freshness(self._clock(), self.stale_grace_seconds) is Freshness.EXPIRED:
            self._remove(key, "expired")
            return None
        return entry

    def _ensure_capacity(self, now: float) -> None:
        if self.max_entries is None or len(self._entries) < self.max_entries:
            return

        for key, entry in list(self._entries.items()):
            if entry.freshness(now, self.stale_grace_seconds) is Freshness.EXPIRED:
                self._remove(key, "expired")

        if len(self._entries) < self.max_entries:
            return

        # Still full: drop the least recently read tenth.
        evict_count = max(1, self.max_entries // 10)
        victims = sorted(self._entries.values(), key=lambda item: item.last_accessed)[:evict_count]
        for entry in victims:
            self._remove(entry.key, "capacity")
        self.logger.info("Evicted cache entries at capacity", evicted=len(victims), max_entries=self.max_entries)

    def _remove(self, key: str, reason: str) -> None:
        if self._entries.pop(key, None) is None:
            return
        self._evictions += 1
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total", reason=reason)
        self._report_size()

    def _report_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self._entries))

    @staticmethod
    def _estimate_size(value: Any) -> int:
        """Approximate payload size as the length of its JSON encoding."""
        try:
            return len(json.dumps(value, default=str))
        except (TypeError, ValueError):
            return 0
