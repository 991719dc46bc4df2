"""
Cached catalog reads over the Rezdy client.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger

from service_catalog.app.adapters.rezdy_client import RezdyClient
from service_catalog.app.caching import keys
from service_catalog.app.caching.cache_manager import CacheManager, CacheResult, Fetcher


_PRODUCT_CODE_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
MAX_PAGE_LIMIT = 1000


class RezdyCatalog:
    """Route-facing catalog operations, each served through the cache manager."""

    def __init__(self, cache_manager: CacheManager, client: RezdyClient):
        self.cache_manager = cache_manager
        self.client = client
        self.logger = get_logger("catalog.rezdy_catalog")

    async def products(
        self,
        limit: int = keys.DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        *,
        featured: bool = False,
        force_refresh: bool = False,
        high_priority: bool = False,
    ) -> CacheResult:
        self._validate_page(limit, offset)
        key = keys.products_key(limit, offset, featured=featured)
        result = await self.cache_manager.get_or_fetch(
            key,
            keys.ttl_for_key(key),
            lambda: self.client.get_products(limit, offset, featured=featured, high_priority=high_priority),
            force_refresh=force_refresh,
        )
        if not result.cached and not result.shared:
            self._cache_product_details(result.data.get("products", []))
        return result

    async def product(self, product_code: str, *, force_refresh: bool = False) -> CacheResult:
        code = self._validate_product_code(product_code)
        key = keys.product_key(code)
        return await self.cache_manager.get_or_fetch(
            key,
            keys.ttl_for_key(key),
            lambda: self.client.get_product(code),
            force_refresh=force_refresh,
        )

    async def categories(self, *, visible_only: bool = False, force_refresh: bool = False) -> CacheResult:
        key = keys.categories_key(visible_only)
        return await self.cache_manager.get_or_fetch(
            key,
            keys.ttl_for_key(key),
            lambda: self.client.get_categories(visible_only=visible_only),
            force_refresh=force_refresh,
        )

    async def category_products(
        self,
        category_id: int,
        limit: int = keys.DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        *,
        force_refresh: bool = False,
        high_priority: bool = False,
    ) -> CacheResult:
        if category_id < 1:
            raise ValidationError("categoryId must be a positive integer", details={"categoryId": category_id})
        self._validate_page(limit, offset)
        key = keys.category_products_key(category_id, limit, offset)
        return await self.cache_manager.get_or_fetch(
            key,
            keys.ttl_for_key(key),
            lambda: self.client.get_category_products(category_id, limit, offset, high_priority=high_priority),
            force_refresh=force_refresh,
        )

    async def availability(
        self,
        product_code: str,
        start_time: str,
        end_time: str,
        participants: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> CacheResult:
        code = self._validate_product_code(product_code)
        start = self._format_date(start_time, field="startTime")
        end = self._format_date(end_time, field="endTime")
        if start > end:
            raise ValidationError("startTime must not be after endTime", details={"startTime": start, "endTime": end})

        key = keys.availability_key(code, start, end, participants)
        return await self.cache_manager.get_or_fetch(
            key,
            keys.ttl_for_key(key),
            lambda: self.client.get_availability(code, start, end, participants),
            force_refresh=force_refresh,
        )

    def invalidate_product_cache(self, product_code: Optional[str] = None) -> Dict[str, int]:
        """Drop product caches; category pages may embed the product so they go too."""
        removed: Dict[str, int] = {}
        if product_code:
            code = self._validate_product_code(product_code)
            product_key = keys.product_key(code)
            removed[product_key] = int(self.cache_manager.delete(product_key))
            prefixes = [f"availability:{code}:", "category:", "products:"]
        else:
            prefixes = ["product", "category:", "availability:"]

        removed.update({prefix: self.cache_manager.invalidate(prefix) for prefix in prefixes})
        self.logger.info("Product cache invalidated", product_code=product_code, removed=removed)
        return removed

    def _cache_product_details(self, products: List[Dict[str, Any]]) -> None:
        """Seed single-product entries from a freshly fetched listing page."""
        for product in products:
            code = product.get("productCode") if isinstance(product, dict) else None
            if code:
                self.cache_manager.set(keys.product_key(code), product)

    def resolve_fetcher(self, key: str) -> Optional[Fetcher]:
        """Map a cache key back to the upstream call that produces it."""
        parsed = keys.parse_key(key)
        if parsed is None:
            return None

        params = parsed.params
        if parsed.resource == "products":
            if params.get("featured") == "true":
                return lambda: self.client.get_products(featured=True)
            return lambda: self.client.get_products(int(params["limit"]), int(params["offset"]))
        if parsed.resource == "product":
            return lambda: self.client.get_product(params["product_code"])
        if parsed.resource == "categories":
            return lambda: self.client.get_categories(visible_only=params["visible"] == "true")
        if parsed.resource == "category_products":
            return lambda: self.client.get_category_products(
                int(params["category_id"]),
                int(params["limit"]),
                int(params["offset"]),
            )
        return None

    @staticmethod
    def pagination(limit: int, offset: int, count: int) -> Dict[str, Any]:
        return {"limit": limit, "offset": offset, "count": count, "hasMore": count == limit}

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit < 1 or limit > MAX_PAGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}", details={"limit": limit})
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})

    @staticmethod
    def _validate_product_code(product_code: str) -> str:
        code = (product_code or "").strip()
        if not _PRODUCT_CODE_PATTERN.match(code):
            raise ValidationError("Invalid product code", details={"productCode": product_code})
        return code

    @staticmethod
    def _format_date(value: str, *, field: str) -> str:
        """Normalise ISO dates or datetimes to the YYYY-MM-DD form Rezdy expects."""
        candidate = (value or "").strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            if len(candidate) == 10:
                return date.fromisoformat(candidate).isoformat()
            return datetime.fromisoformat(candidate).date().isoformat()
        except ValueError as exc:
            raise ValidationError(f"Invalid {field} date", details={field: value}) from exc
