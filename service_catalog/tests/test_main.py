"""
Unit tests for Catalog main service.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.main import CatalogService
from shared.config import get_config
from shared.errors import ConfigurationError, NotFoundError, UpstreamFailure


def make_rezdy_client(configured: bool = True) -> MagicMock:
    client = MagicMock()
    client.configured = configured
    client.circuit_breaker.is_open.return_value = False
    client.close = AsyncMock()
    client.get_products = AsyncMock(return_value={
        "products": [{"productCode": "P1"}, {"productCode": "P2"}],
        "totalCount": 2,
    })
    client.get_product = AsyncMock(return_value={"productCode": "P1", "name": "Hunter Valley Wine Tour"})
    client.get_categories = AsyncMock(return_value=[{"id": 1, "name": "Winery Tours"}])
    client.get_category_products = AsyncMock(return_value={
        "products": [{"productCode": "P1", "categoryId": 1}],
        "totalCount": 1,
    })
    client.get_availability = AsyncMock(return_value={
        "sessions": [{"id": 10, "seatsAvailable": 5}],
        "availability": [{"productCode": "P1", "sessions": [{"id": 10, "seatsAvailable": 5}]}],
    })
    return client


class TestCatalogService:
    """Test cases for CatalogService."""

    @pytest.fixture
    def config(self):
        return get_config("catalog", 8000, rezdy_api_key="test-key", cache_warm_on_startup=False)

    @pytest.fixture
    def rezdy_client(self):
        return make_rezdy_client()

    @pytest.fixture
    def service(self, config, rezdy_client):
        return CatalogService(config, rezdy_client=rezdy_client)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "catalog"

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "catalog"
        assert data["dependencies"] == {"rezdy": "ok", "cache": "healthy"}

    def test_health_reports_unconfigured_rezdy(self, config):
        service = CatalogService(config, rezdy_client=make_rezdy_client(configured=False))
        response = TestClient(service.app).get("/health")
        assert response.json()["dependencies"]["rezdy"] == "unconfigured"

    def test_metrics_endpoint(self, client):
        client.get("/api/rezdy/products")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "cache_requests_total" in response.text

    def test_products_miss_then_hit(self, client, rezdy_client):
        first = client.get("/api/rezdy/products", params={"limit": 2, "offset": 0})
        second = client.get("/api/rezdy/products", params={"limit": 2, "offset": 0})

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert first.headers["X-Cache-Key"] == "products:2:0"
        assert first.headers["Cache-Control"] == "public, s-maxage=1800, stale-while-revalidate=3600"
        assert first.json()["cached"] is False
        assert first.json()["pagination"] == {"limit": 2, "offset": 0, "count": 2, "hasMore": True}
        assert second.headers["X-Cache"] == "HIT"
        assert second.json()["cached"] is True
        rezdy_client.get_products.assert_awaited_once()

    def test_featured_products(self, client, rezdy_client):
        response = client.get("/api/rezdy/products", params={"featured": "true"})

        assert response.headers["X-Cache-Key"] == "products:featured"
        rezdy_client.get_products.assert_awaited_once_with(100, 0, featured=True, high_priority=False)

    def test_products_stats(self, client):
        client.get("/api/rezdy/products")
        response = client.get("/api/rezdy/products", params={"stats": "true"})

        data = response.json()
        assert data["cache"]["size"] == 3
        assert data["timestamp"].endswith("Z")

    def test_product_by_code(self, client):
        response = client.get("/api/rezdy/products/P1")

        assert response.status_code == 200
        assert response.json()["product"]["name"] == "Hunter Valley Wine Tour"
        assert response.headers["X-Cache-Key"] == "product:P1"

    def test_product_not_found(self, client, rezdy_client):
        rezdy_client.get_product.side_effect = NotFoundError("Rezdy resource not found")

        response = client.get("/api/rezdy/products/MISSING")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_categories(self, client, rezdy_client):
        response = client.get("/api/rezdy/categories", params={"visible": "true"})

        assert response.json()["count"] == 1
        assert response.headers["X-Cache-Key"] == "categories:visible"
        assert response.headers["Cache-Control"] == "public, s-maxage=3600, stale-while-revalidate=7200"
        rezdy_client.get_categories.assert_awaited_once_with(visible_only=True)

    def test_category_products_high_priority(self, client, rezdy_client):
        response = client.get(
            "/api/rezdy/categories/1/products",
            headers={"X-Preload-Priority": "high"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["categoryId"] == 1
        assert data["products"][0]["productCode"] == "P1"
        rezdy_client.get_category_products.assert_awaited_once_with(1, 100, 0, high_priority=True)

    def test_category_products_refresh(self, client, rezdy_client):
        client.get("/api/rezdy/categories/1/products")
        response = client.get("/api/rezdy/categories/1/products", params={"refresh": "true"})

        assert response.headers["X-Cache"] == "MISS"
        assert rezdy_client.get_category_products.await_count == 2

    def test_stale_fallback_header(self, client, service, rezdy_client):
        service.cache_manager.set("category:1:products:100:0", {"products": [{"productCode": "OLD"}]}, 0)
        rezdy_client.get_category_products.side_effect = UpstreamFailure("rezdy", "timeout")

        response = client.get("/api/rezdy/categories/1/products")

        assert response.status_code == 200
        assert response.headers["X-Cache"] == "STALE"
        data = response.json()
        assert data["stale"] is True
        assert data["cached"] is True
        assert data["products"][0]["productCode"] == "OLD"

    def test_upstream_failure_without_cache(self, client, rezdy_client):
        rezdy_client.get_products.side_effect = UpstreamFailure("rezdy", "Unexpected status 500")

        response = client.get("/api/rezdy/products")

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_FAILURE"
        assert "X-Request-ID" in response.headers

    def test_missing_api_key(self, client, rezdy_client):
        rezdy_client.get_products.side_effect = ConfigurationError("Rezdy API key not configured")

        response = client.get("/api/rezdy/products")

        assert response.status_code == 500
        assert response.json()["code"] == "CONFIGURATION_ERROR"

    def test_invalid_paging(self, client):
        response = client.get("/api/rezdy/products", params={"limit": 0})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_availability(self, client, rezdy_client):
        response = client.get("/api/rezdy/availability", params={
            "productCode": "P1",
            "startTime": "2025-03-01",
            "endTime": "2025-03-02",
        })

        assert response.status_code == 200
        assert response.json()["sessions"][0]["seatsAvailable"] == 5
        assert response.headers["Cache-Control"] == "public, s-maxage=60, stale-while-revalidate=120"
        rezdy_client.get_availability.assert_awaited_once_with("P1", "2025-03-01", "2025-03-02", None)

    def test_availability_missing_params(self, client):
        response = client.get("/api/rezdy/availability", params={"productCode": "P1"})

        assert response.status_code == 400
        assert "Missing required parameters" in response.json()["message"]

    def test_cache_stats(self, client):
        client.get("/api/rezdy/products")
        client.get("/api/rezdy/products")

        data = client.get("/api/cache/stats").json()

        assert data["cache"]["hits"] == 1
        assert data["metrics"]["hit_rate"] == 0.5

    def test_warm_category(self, client, rezdy_client):
        response = client.post("/api/cache/warm", params={"categoryId": 4})

        data = response.json()
        assert data["success"] is True
        assert data["categoryId"] == 4
        assert data["summary"]["warmed"] == 1
        rezdy_client.get_category_products.assert_awaited_once_with(4, 100, 0)

    def test_warm_all(self, client, rezdy_client):
        response = client.post("/api/cache/warm")

        data = response.json()
        assert data["summary"]["planned"] == 7
        assert data["summary"]["warmed"] == 7
        assert rezdy_client.get_category_products.await_count == 5

    def test_warm_health(self, client):
        data = client.get("/api/cache/warm", params={"health": "true"}).json()
        assert data["status"] == "healthy"
        assert "recommendations" in data

        metrics = client.get("/api/cache/warm").json()
        assert metrics["metrics"]["total_requests"] == 0

    def test_invalidate_by_product(self, client, service):
        service.cache_manager.set("product:P1", {})
        service.cache_manager.set("category:1:products:100:0", {})

        response = client.post("/api/cache/invalidate", json={"productCode": "P1"})

        assert response.json()["removed"]["product:P1"] == 1
        assert service.cache_manager.store.keys() == []

    def test_invalidate_by_prefix(self, client, service):
        service.cache_manager.set("availability:P1:2025-01-01:2025-01-02", {})

        response = client.post("/api/cache/invalidate", json={"prefix": "availability:"})

        assert response.json() == {"success": True, "removed": {"availability:": 1}}

    def test_invalidate_requires_target(self, client):
        response = client.post("/api/cache/invalidate", json={})
        assert response.status_code == 400

    def test_startup_warms_cache(self, rezdy_client):
        config = get_config("catalog", 8000, rezdy_api_key="test-key", cache_warm_on_startup=True)
        service = CatalogService(config, rezdy_client=rezdy_client)

        with TestClient(service.app):
            assert service.cache_manager.get("categories:all") is None
            assert service.cache_manager.get("categories:visible") is not None

        rezdy_client.close.assert_awaited_once()

    def test_startup_skips_warm_without_api_key(self):
        rezdy_client = make_rezdy_client(configured=False)
        config = get_config("catalog", 8000, cache_warm_on_startup=True)
        service = CatalogService(config, rezdy_client=rezdy_client)

        with TestClient(service.app):
            pass

        rezdy_client.get_categories.assert_not_awaited()

    def test_listed_product_served_from_cache(self, client, rezdy_client):
        client.get("/api/rezdy/products")
        response = client.get("/api/rezdy/products/P2")

        assert response.status_code == 200
        assert response.headers["X-Cache"] == "HIT"
        assert response.json()["product"] == {"productCode": "P2"}
        rezdy_client.get_product.assert_not_awaited()

    def test_category_zero_rejected(self, client, rezdy_client):
        response = client.get("/api/rezdy/categories/0/products")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        rezdy_client.get_category_products.assert_not_awaited()
