"""
Rezdy reservation system client for the catalog service.
"""

import time
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ConfigurationError, NotFoundError, UpstreamFailure
from shared.logging import get_logger
from shared.retry import RetryConfig, call_with_retry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

SERVICE_NAME = "rezdy"
PRIORITY_HEADER_VALUE = "u=1, i"


class RezdyClient:
    """Async client for the Rezdy REST API.

    Every call goes through a circuit breaker and a retry loop. Only
    ``UpstreamFailure`` is retried or counted against the breaker; a missing
    API key or a 404 is reported straight away.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        *,
        timeout: float = 10.0,
        priority_timeout: float = 15.0,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.priority_timeout = priority_timeout
        self.metrics = metrics
        self.logger = get_logger("catalog.rezdy_client")

        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exceptions=(UpstreamFailure,),
            name=SERVICE_NAME,
        )

        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_products(
        self,
        limit: int = 100,
        offset: int = 0,
        *,
        featured: bool = False,
        high_priority: bool = False,
    ) -> Dict[str, Any]:
        """Fetch a page of products; ``featured`` narrows to the featured listing."""
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if featured:
            params["featured"] = "true"
        data = await self._get("/products", params, resource="products", high_priority=high_priority)
        products = self._extract_list(data, "products")
        return {"products": products, "totalCount": data.get("totalCount", len(products))}

    async def get_product(self, product_code: str) -> Dict[str, Any]:
        """Fetch a single product by its Rezdy product code."""
        data = await self._get(f"/products/{product_code}", {}, resource="product")
        product = data.get("product") if isinstance(data.get("product"), dict) else data
        if not product:
            raise NotFoundError(f"Product {product_code} not found", details={"product_code": product_code})
        return product

    async def get_categories(self, *, visible_only: bool = False) -> List[Dict[str, Any]]:
        """Fetch the category listing."""
        data = await self._get("/categories", {"limit": 100, "offset": 0}, resource="categories")
        categories = self._extract_list(data, "categories")
        if visible_only:
            categories = [category for category in categories if category.get("visible", True)]
        return categories

    async def get_category_products(
        self,
        category_id: int,
        limit: int = 100,
        offset: int = 0,
        *,
        high_priority: bool = False,
    ) -> Dict[str, Any]:
        """Fetch one page of a category's products, tagging each with ``categoryId``."""
        data = await self._get(
            f"/categories/{category_id}/products",
            {"limit": limit, "offset": offset},
            resource="category_products",
            high_priority=high_priority,
        )
        products = [
            {**product, "categoryId": category_id}
            for product in self._extract_list(data, "products")
        ]
        return {"products": products, "totalCount": data.get("totalCount", len(products))}

    async def get_availability(
        self,
        product_code: str,
        start_time: str,
        end_time: str,
        participants: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fetch availability sessions for a product between two dates (YYYY-MM-DD)."""
        params: Dict[str, Any] = {
            "productCode": product_code,
            "startTime": start_time,
            "endTime": end_time,
        }
        if participants:
            params["participants"] = participants
        data = await self._get("/availability", params, resource="availability")
        sessions = data.get("sessions") or []
        return {
            **data,
            "sessions": sessions,
            "availability": [{"productCode": product_code, "sessions": sessions}] if sessions else [],
        }

    def get_state(self) -> Dict[str, Any]:
        """Client status for health reporting."""
        return {
            "configured": self.configured,
            "base_url": self.base_url,
            "circuit_breaker": self.circuit_breaker.get_state(),
        }

    async def _get(
        self,
        path: str,
        params: Dict[str, Any],
        *,
        resource: str,
        high_priority: bool = False,
    ) -> Dict[str, Any]:
        """Execute a GET with circuit breaker, retry and error translation."""
        if not self.api_key:
            raise ConfigurationError("Rezdy API key not configured", details={"setting": "REZDY_API_KEY"})

        query = {**params, "apiKey": self.api_key}
        headers = {"Priority": PRIORITY_HEADER_VALUE} if high_priority else None
        timeout = self.priority_timeout if high_priority else self.timeout
        url = f"{self.base_url}{path}"

        async def _request() -> Dict[str, Any]:
            start = time.perf_counter()
            status = "error"
            try:
                response = await self._client.get(url, params=query, headers=headers, timeout=timeout)
                status = str(response.status_code)
            except httpx.HTTPError as exc:
                raise UpstreamFailure(
                    SERVICE_NAME,
                    f"{type(exc).__name__}: {exc}",
                    details={"path": path},
                ) from exc
            finally:
                self._record_request(resource, status, time.perf_counter() - start)

            if response.status_code == 404:
                self.logger.info("Rezdy resource not found", path=path)
                raise NotFoundError(f"Rezdy resource not found: {path}", details={"path": path})

            if response.status_code >= 400:
                self.logger.error(
                    "Rezdy request failed",
                    path=path,
                    status_code=response.status_code,
                    response=response.text[:500],
                )
                raise UpstreamFailure(
                    SERVICE_NAME,
                    f"Unexpected status {response.status_code}",
                    details={"status_code": response.status_code, "path": path},
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise UpstreamFailure(SERVICE_NAME, "Malformed JSON payload", details={"path": path}) from exc
            if not isinstance(data, dict):
                raise UpstreamFailure(SERVICE_NAME, "Unexpected payload shape", details={"path": path})

            self.logger.debug("Rezdy resource retrieved", path=path, high_priority=high_priority)
            return data

        async def _guarded() -> Dict[str, Any]:
            try:
                return await self.circuit_breaker.call(_request)
            except CircuitBreakerOpenException as exc:
                raise UpstreamFailure(SERVICE_NAME, str(exc), details={"path": path}) from exc

        return await call_with_retry(
            _guarded,
            exceptions=(UpstreamFailure,),
            config=self.retry_config,
            name=f"rezdy.{resource}",
        )

    def _record_request(self, resource: str, status: str, duration: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("upstream_requests_total", resource=resource, status=status)
        self.metrics.observe_histogram("upstream_request_duration_seconds", duration, resource=resource)

    @staticmethod
    def _extract_list(data: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
        """Rezdy wraps lists under the resource name or under ``data``."""
        items = data.get(field)
        if items is None:
            items = data.get("data")
        return list(items or [])
