"""
Catalog cache manager: the entry point route handlers use for upstream reads.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    TYPE_CHECKING,
    TypeVar,
    Union,
)

from shared.errors import ConfigurationError, NotFoundError
from shared.logging import get_logger
from .deduplicator import RequestDeduplicator
from .keys import DEFAULT_TTL, ttl_for_key
from .store import CacheStore
from .warm_plan import WarmEntry, WarmPlanLoader

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

V = TypeVar("V")

Fetcher = Callable[[], Awaitable[V]]
FetcherResolver = Callable[[str], Optional[Fetcher]]

HIT_RATE_CRITICAL = 0.5
HIT_RATE_WARNING = 0.7
STALE_RATIO_WARNING = 0.3
MEMORY_WARNING_BYTES = 50 * 1024 * 1024
IN_FLIGHT_NOTICE = 10


@dataclass
class CacheResult(Generic[V]):
    """Value returned by ``get_or_fetch`` plus how it was obtained."""

    key: str
    data: V
    cached: bool
    stale: bool = False
    shared: bool = False

    @property
    def x_cache(self) -> str:
        """Value for the ``X-Cache`` response header."""
        if self.stale:
            return "STALE"
        if self.cached:
            return "HIT"
        if self.shared:
            return "HIT-SHARED"
        return "MISS"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"data": self.data, "cached": self.cached}
        if self.stale:
            payload["stale"] = True
        return payload


class CacheManager(Generic[V]):
    """Compose the store, the deduplicator and stale fallback behind one call."""

    def __init__(
        self,
        store: Optional[CacheStore[V]] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        resolver: Optional[FetcherResolver] = None,
        warm_plan_loader: Optional[WarmPlanLoader] = None,
        warm_concurrency: int = 5,
        default_ttl: int = DEFAULT_TTL,
    ):
        self.store: CacheStore[V] = store if store is not None else CacheStore(metrics=metrics)
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.resolver = resolver
        self.warm_plan_loader = warm_plan_loader
        self.default_ttl = default_ttl
        self.logger = get_logger("catalog.cache_manager")
        self._collector = metrics
        self._warm_concurrency = max(1, warm_concurrency)

        self._stale_served = 0
        self._shared_waits = 0
        self._upstream_fetches = 0
        self._upstream_failures = 0
        # Bumped when a key is invalidated mid-fetch so the late result is not stored.
        self._generations: Dict[str, int] = {}

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: Optional[float],
        fetcher: Fetcher,
        *,
        force_refresh: bool = False,
    ) -> CacheResult[V]:
        """Return ``key`` from cache, or fetch it once for all concurrent callers.

        On fetch failure a stale entry, if one is still held, is returned with
        ``stale=True`` instead of raising. ``ConfigurationError`` and
        ``NotFoundError`` always propagate.
        """
        ttl = ttl_seconds if ttl_seconds is not None else ttl_for_key(key, self.default_ttl)
        resource = key.split(":", 1)[0]

        if not force_refresh:
            cached = self.store.get(key)
            if cached is not None:
                self._record_request(resource, "hit")
                return CacheResult(key=key, data=cached, cached=True)

        generation = self._generations.get(key, 0)

        async def produce() -> V:
            self._upstream_fetches += 1
            value = await fetcher()
            if self._generations.get(key, 0) == generation:
                self.store.set(key, value, ttl)
            else:
                self.logger.info("Key invalidated during fetch; result not cached", key=key)
            return value

        task, owner = self.deduplicator.claim(key, produce)
        if not owner:
            self._shared_waits += 1

        try:
            value = await asyncio.shield(task)
        except (ConfigurationError, NotFoundError):
            raise
        except Exception as exc:
            if owner:
                self._upstream_failures += 1
            stale = self.store.get_stale(key)
            if stale is None:
                self._record_request(resource, "error")
                self.logger.error("Upstream fetch failed with no fallback", key=key, error=str(exc))
                raise

            self._stale_served += 1
            self._record_request(resource, "stale")
            self.logger.warning("Serving stale cache entry after upstream failure", key=key, error=str(exc))
            return CacheResult(key=key, data=stale, cached=True, stale=True)

        self._record_request(resource, "miss" if owner else "shared")
        return CacheResult(key=key, data=value, cached=False, shared=not owner)

    def get(self, key: str) -> Optional[V]:
        """Fresh value for ``key`` or ``None``; never triggers a fetch."""
        return self.store.get(key)

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else ttl_for_key(key, self.default_ttl)
        self.store.set(key, value, ttl)

    def delete(self, key: str) -> bool:
        """Drop exactly ``key``; a fetch already in flight for it will not be cached."""
        self._bump_generations([key])
        return self.store.delete(key)

    def invalidate(self, prefix: str) -> int:
        """
        Drop every cached key starting with ``prefix``.

        Fetches in flight for matching keys keep running and still answer their
        waiters, but their results are not written back to the store.
        """
        self._bump_generations(key for key in self.deduplicator.in_flight_keys() if key.startswith(prefix))
        removed = self.store.invalidate(prefix)
        self.logger.info("Cache invalidated", prefix=prefix, removed=removed)
        return removed

    def _bump_generations(self, keys: Iterable[str]) -> None:
        for key in keys:
            if self.deduplicator.is_in_flight(key):
                self._generations[key] = self._generations.get(key, 0) + 1

    async def warm_cache(self, keys: Optional[Iterable[Union[str, WarmEntry]]] = None) -> Dict[str, Any]:
        """
        Populate popular keys ahead of traffic.

        ``keys`` defaults to the warm plan. Each key is resolved to an upstream
        fetcher; keys that are already fresh are skipped. Failures are logged
        and reported in the summary, never raised.
        """
        summary: Dict[str, Any] = {
            "planned": 0,
            "warmed": 0,
            "skipped": 0,
            "unresolved": [],
            "errors": [],
        }

        try:
            if keys is None:
                plan = self.warm_plan_loader.entries() if self.warm_plan_loader else []
            else:
                plan = [item if isinstance(item, WarmEntry) else WarmEntry(key=item) for item in keys]
        except Exception as exc:
            self.logger.error("Failed to build warm plan", error=str(exc))
            summary["errors"].append({"key": None, "error": str(exc)})
            return summary

        summary["planned"] = len(plan)
        if not plan:
            self.logger.info("No keys planned; cache warm skipped")
            return summary

        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self._warm_concurrency)
        outcomes = await asyncio.gather(
            *(self._warm_entry(entry, semaphore) for entry in plan),
            return_exceptions=True,
        )

        for entry, outcome in zip(plan, outcomes):
            if isinstance(outcome, BaseException):
                summary["errors"].append({"key": entry.key, "error": str(outcome)})
                continue

            result = outcome["result"]
            if result == "warmed":
                summary["warmed"] += 1
            elif result == "skipped":
                summary["skipped"] += 1
            elif result == "unresolved":
                summary["unresolved"].append(entry.key)
            else:
                summary["errors"].append({"key": entry.key, "error": outcome.get("error", "unknown error")})

        summary["duration_seconds"] = round(time.perf_counter() - start, 3)
        self.logger.info(
            "Cache warm completed",
            planned=summary["planned"],
            warmed=summary["warmed"],
            skipped=summary["skipped"],
            unresolved=len(summary["unresolved"]),
            errors=len(summary["errors"]),
        )
        return summary

    async def _warm_entry(self, entry: WarmEntry, semaphore: asyncio.Semaphore) -> Dict[str, Any]:
        """Warm a single key."""
        resource = entry.key.split(":", 1)[0]
        async with semaphore:
            start = time.perf_counter()
            result = "skipped"
            error: Optional[str] = None

            try:
                if not self.store.is_fresh(entry.key):
                    fetcher = self.resolver(entry.key) if self.resolver else None
                    if fetcher is None:
                        result = "unresolved"
                        self.logger.warning("No fetcher for warm key", key=entry.key)
                    else:
                        outcome = await self.get_or_fetch(entry.key, entry.ttl_seconds, fetcher)
                        if outcome.stale:
                            result = "error"
                            error = "upstream failed; stale entry retained"
                        else:
                            result = "warmed"
            except Exception as exc:
                error = str(exc)
                result = "error"
                self.logger.error("Failed to warm cache entry", key=entry.key, error=error)
            finally:
                duration = time.perf_counter() - start
                self._record_warm_metrics(resource, result, duration)

            return {"key": entry.key, "result": result, "error": error}

    def metrics(self) -> Dict[str, Any]:
        """Hit/miss rates and counters derived from store and manager activity."""
        snapshot = self.store.stats()
        total = snapshot.total_requests
        return {
            "hit_rate": snapshot.hits / total if total else 0.0,
            "miss_rate": snapshot.misses / total if total else 0.0,
            "eviction_count": snapshot.evictions,
            "memory_usage": snapshot.memory_usage_estimate,
            "total_requests": total,
            "stale_served": self._stale_served,
            "shared_waits": self._shared_waits,
            "upstream_fetches": self._upstream_fetches,
            "upstream_failures": self._upstream_failures,
        }

    def stats(self) -> Dict[str, Any]:
        """Store snapshot plus in-flight request count."""
        payload = self.store.stats().to_dict()
        payload["in_flight"] = self.deduplicator.in_flight_count()
        payload["stale_grace_seconds"] = self.store.stale_grace_seconds
        payload["max_entries"] = self.store.max_entries
        return payload

    def health_status(self) -> Dict[str, Any]:
        """Classify cache health as healthy, warning or critical with recommendations."""
        metrics = self.metrics()
        snapshot = self.store.stats()
        in_flight = self.deduplicator.in_flight_count()
        recommendations: List[str] = []
        status = "healthy"

        if metrics["total_requests"]:
            if metrics["hit_rate"] < HIT_RATE_CRITICAL:
                status = "critical"
                recommendations.append("Hit rate is low - consider cache warming or increasing TTL")
            elif metrics["hit_rate"] < HIT_RATE_WARNING:
                status = "warning"
                recommendations.append("Hit rate could be improved - consider cache optimization")

        if snapshot.size:
            stale_ratio = (snapshot.stale + snapshot.expired) / snapshot.size
            if stale_ratio > STALE_RATIO_WARNING:
                status = "critical" if status == "critical" else "warning"
                recommendations.append("High ratio of stale/expired entries - consider background refresh")

        if snapshot.memory_usage_estimate > MEMORY_WARNING_BYTES:
            status = "critical" if status == "critical" else "warning"
            recommendations.append("High memory usage - consider cache size limits")

        if in_flight > IN_FLIGHT_NOTICE:
            recommendations.append("High number of in-flight requests - request deduplication is working")

        if not recommendations:
            recommendations.append("Cache is performing well")

        return {
            "status": status,
            "metrics": {**metrics, "cache_size": snapshot.size, "in_flight": in_flight,
                        "freshness": snapshot.freshness_buckets},
            "recommendations": recommendations,
        }

    def _record_request(self, resource: str, result: str) -> None:
        if not self._collector:
            return
        try:
            self._collector.increment_counter("cache_requests_total", resource=resource, result=result)
        except Exception as exc:  # pragma: no cover - metrics failures never break reads
            self.logger.debug("Failed to record cache metrics", error=str(exc))

    def _record_warm_metrics(self, resource: str, result: str, duration: float) -> None:
        """Record metrics for cache warm operations."""
        if not self._collector:
            return
        try:
            self._collector.increment_counter("cache_warm_total", resource=resource, result=result)
            self._collector.observe_histogram("cache_warm_duration_seconds", duration, resource=resource)
        except Exception as exc:  # pragma: no cover - metrics failures never break warming
            self.logger.debug("Failed to record warm metrics", error=str(exc))
