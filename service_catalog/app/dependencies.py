"""
FastAPI dependencies exposing the process-wide catalog objects to routes.

The objects are built once by ``CatalogService`` and parked on
``app.state``; handlers receive them per request through ``Depends``.
"""

from fastapi import Request

from service_catalog.app.caching.cache_manager import CacheManager
from service_catalog.app.domain.catalog import RezdyCatalog


def get_cache_manager(request: Request) -> CacheManager:
    return request.app.state.cache_manager


def get_catalog(request: Request) -> RezdyCatalog:
    return request.app.state.catalog
