"""
Catalog service for Pineapple Tours: cached proxy routes over the Rezdy API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header, Query, Response
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ServiceConfig
from shared.errors import UpstreamFailure, ValidationError
from shared.retry import RetryConfig
from service_catalog.app.adapters.rezdy_client import SERVICE_NAME, RezdyClient
from service_catalog.app.caching import keys
from service_catalog.app.caching.cache_manager import CacheManager, CacheResult
from service_catalog.app.caching.store import CacheStore
from service_catalog.app.caching.warm_plan import WarmPlanLoader
from service_catalog.app.dependencies import get_cache_manager, get_catalog
from service_catalog.app.domain.catalog import RezdyCatalog


class InvalidateRequest(BaseModel):
    """Body of the cache invalidation endpoint; one of the two fields is required."""

    prefix: Optional[str] = None
    productCode: Optional[str] = None


class CatalogService(BaseService):
    """Catalog service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        rezdy_client: Optional[RezdyClient] = None,
        cache_manager: Optional[CacheManager] = None,
    ):
        super().__init__("catalog", 8000, config=config)

        self.rezdy_client = rezdy_client or RezdyClient(
            self.config.rezdy_base_url,
            self.config.rezdy_api_key,
            timeout=self.config.rezdy_timeout_seconds,
            priority_timeout=self.config.rezdy_priority_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=self.config.rezdy_retry_attempts,
                base_delay=0.5,
                max_delay=5.0,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=self.config.rezdy_circuit_failure_threshold,
                recovery_timeout=self.config.rezdy_circuit_recovery_seconds,
                expected_exceptions=(UpstreamFailure,),
                name=SERVICE_NAME,
            ),
            metrics=self.metrics,
        )
        self.warm_plan_loader = WarmPlanLoader(
            self.config.cache_warm_file,
            popular_category_ids=self.config.popular_category_ids,
        )
        self.cache_manager = cache_manager or CacheManager(
            CacheStore(
                stale_grace_seconds=self.config.cache_stale_grace_seconds,
                max_entries=self.config.cache_max_entries,
                metrics=self.metrics,
            ),
            metrics=self.metrics,
            warm_plan_loader=self.warm_plan_loader,
            warm_concurrency=self.config.cache_warm_concurrency,
            default_ttl=self.config.cache_default_ttl,
        )
        self.catalog = RezdyCatalog(self.cache_manager, self.rezdy_client)
        if self.cache_manager.resolver is None:
            self.cache_manager.resolver = self.catalog.resolve_fetcher

        self.app.state.cache_manager = self.cache_manager
        self.app.state.catalog = self.catalog
        self.app.state.catalog_service = self

        @self.app.on_event("startup")
        async def _startup():
            await self._warm_on_startup()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.rezdy_client.close()

        self._setup_catalog_routes()
        self._setup_cache_routes()

    async def _warm_on_startup(self) -> None:
        """Best-effort warm of popular keys; never blocks startup on upstream errors."""
        if not self.config.cache_warm_on_startup:
            return
        if not self.rezdy_client.configured:
            self.logger.warning("Rezdy API key not configured; startup cache warm skipped")
            return
        summary = await self.cache_manager.warm_cache()
        self.logger.info("Startup cache warm finished", warmed=summary["warmed"], errors=len(summary["errors"]))

    async def _check_dependencies(self) -> Dict[str, str]:
        if not self.rezdy_client.configured:
            rezdy = "unconfigured"
        elif self.rezdy_client.circuit_breaker.is_open():
            rezdy = "degraded"
        else:
            rezdy = "ok"
        return {"rezdy": rezdy, "cache": self.cache_manager.health_status()["status"]}

    @staticmethod
    def _apply_cache_headers(response: Response, result: CacheResult) -> None:
        """Express the cache outcome and TTL tier as CDN-facing headers."""
        ttl = keys.ttl_for_key(result.key)
        response.headers["Cache-Control"] = f"public, s-maxage={ttl}, stale-while-revalidate={ttl * 2}"
        response.headers["X-Cache"] = result.x_cache
        response.headers["X-Cache-Key"] = result.key

    @staticmethod
    def _envelope(result: CacheResult, payload: Dict[str, Any]) -> Dict[str, Any]:
        payload["cached"] = result.cached
        if result.stale:
            payload["stale"] = True
        return payload

    def _stats_payload(self, cache_manager: CacheManager) -> Dict[str, Any]:
        return {"cache": cache_manager.stats(), "timestamp": self._format_iso(datetime.now(timezone.utc))}

    @staticmethod
    def _format_iso(value: datetime) -> str:
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _setup_catalog_routes(self):
        """Set up Rezdy proxy routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "catalog",
                "message": "Pineapple Tours - Catalog Service",
                "version": "1.0.0"
            }

        @self.app.get("/api/rezdy/products")
        async def list_products(
            response: Response,
            limit: int = Query(keys.DEFAULT_PAGE_LIMIT),
            offset: int = Query(0),
            featured: Optional[str] = Query(None),
            stats: Optional[str] = Query(None),
            refresh: Optional[str] = Query(None),
            x_preload_priority: Optional[str] = Header(None, alias="X-Preload-Priority"),
            catalog: RezdyCatalog = Depends(get_catalog),
            cache_manager: CacheManager = Depends(get_cache_manager),
        ):
            """List products, one page at a time."""
            if stats == "true":
                return self._stats_payload(cache_manager)

            result = await catalog.products(
                limit,
                offset,
                featured=bool(featured) and featured != "false",
                force_refresh=refresh == "true",
                high_priority=x_preload_priority == "high",
            )
            self._apply_cache_headers(response, result)
            products = result.data["products"]
            return self._envelope(result, {
                "products": products,
                "totalCount": result.data.get("totalCount", len(products)),
                "pagination": catalog.pagination(limit, offset, len(products)),
            })

        @self.app.get("/api/rezdy/products/{product_code}")
        async def get_product(
            product_code: str,
            response: Response,
            refresh: Optional[str] = Query(None),
            catalog: RezdyCatalog = Depends(get_catalog),
        ):
            """Fetch a single product."""
            result = await catalog.product(product_code, force_refresh=refresh == "true")
            self._apply_cache_headers(response, result)
            return self._envelope(result, {"product": result.data})

        @self.app.get("/api/rezdy/categories")
        async def list_categories(
            response: Response,
            visible: Optional[str] = Query(None),
            refresh: Optional[str] = Query(None),
            catalog: RezdyCatalog = Depends(get_catalog),
        ):
            """List product categories."""
            result = await catalog.categories(
                visible_only=visible == "true",
                force_refresh=refresh == "true",
            )
            self._apply_cache_headers(response, result)
            return self._envelope(result, {"categories": result.data, "count": len(result.data)})

        @self.app.get("/api/rezdy/categories/{category_id}/products")
        async def list_category_products(
            category_id: int,
            response: Response,
            limit: int = Query(keys.DEFAULT_PAGE_LIMIT),
            offset: int = Query(0),
            stats: Optional[str] = Query(None),
            refresh: Optional[str] = Query(None),
            x_preload_priority: Optional[str] = Header(None, alias="X-Preload-Priority"),
            catalog: RezdyCatalog = Depends(get_catalog),
            cache_manager: CacheManager = Depends(get_cache_manager),
        ):
            """List one page of a category's products."""
            if stats == "true":
                return self._stats_payload(cache_manager)

            result = await catalog.category_products(
                category_id,
                limit,
                offset,
                force_refresh=refresh == "true",
                high_priority=x_preload_priority == "high",
            )
            self._apply_cache_headers(response, result)
            products = result.data["products"]
            return self._envelope(result, {
                "products": products,
                "categoryId": category_id,
                "totalCount": result.data.get("totalCount", len(products)),
                "pagination": catalog.pagination(limit, offset, len(products)),
            })

        @self.app.get("/api/rezdy/availability")
        async def get_availability(
            response: Response,
            product_code: Optional[str] = Query(None, alias="productCode"),
            start_time: Optional[str] = Query(None, alias="startTime"),
            end_time: Optional[str] = Query(None, alias="endTime"),
            participants: Optional[str] = Query(None),
            catalog: RezdyCatalog = Depends(get_catalog),
        ):
            """Availability sessions for a product over a date range."""
            if not product_code or not start_time or not end_time:
                raise ValidationError("Missing required parameters: productCode, startTime, endTime")

            result = await catalog.availability(product_code, start_time, end_time, participants)
            self._apply_cache_headers(response, result)
            return self._envelope(result, dict(result.data))

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/api/cache/stats")
        async def get_cache_stats(cache_manager: CacheManager = Depends(get_cache_manager)):
            """Store snapshot and derived metrics."""
            payload = self._stats_payload(cache_manager)
            payload["metrics"] = cache_manager.metrics()
            return payload

        @self.app.post("/api/cache/warm")
        async def warm_cache(
            category_id: Optional[int] = Query(None, alias="categoryId"),
            cache_manager: CacheManager = Depends(get_cache_manager),
        ):
            """Warm one category's first page, or the whole popular-key plan."""
            if category_id is not None:
                summary = await cache_manager.warm_cache([keys.category_products_key(category_id)])
                return {
                    "success": not summary["errors"],
                    "message": f"Cache warming completed for category {category_id}",
                    "categoryId": category_id,
                    "summary": summary,
                }

            summary = await cache_manager.warm_cache()
            return {
                "success": not summary["errors"],
                "message": "Cache warming completed for all popular categories",
                "summary": summary,
            }

        @self.app.get("/api/cache/warm")
        async def cache_warm_status(
            health: Optional[str] = Query(None),
            cache_manager: CacheManager = Depends(get_cache_manager),
        ):
            """Cache health (``health=true``) or performance metrics."""
            timestamp = self._format_iso(datetime.now(timezone.utc))
            if health == "true":
                return {**cache_manager.health_status(), "timestamp": timestamp}
            return {"metrics": cache_manager.metrics(), "timestamp": timestamp}

        @self.app.post("/api/cache/invalidate")
        async def invalidate_cache(
            body: InvalidateRequest,
            catalog: RezdyCatalog = Depends(get_catalog),
            cache_manager: CacheManager = Depends(get_cache_manager),
        ):
            """Invalidate by key prefix, or every cache touching a product."""
            if body.productCode:
                removed = catalog.invalidate_product_cache(body.productCode)
                return {"success": True, "removed": removed}
            if body.prefix:
                return {"success": True, "removed": {body.prefix: cache_manager.invalidate(body.prefix)}}
            raise ValidationError("Provide either prefix or productCode")


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = CatalogService(config)
    return service.app


if __name__ == "__main__":
    service = CatalogService()
    service.run()
