"""
Catalog service package for Pineapple Tours.

The catalog service fronts the Rezdy reservation system for the website's
route handlers, providing:
- Caching: in-process TTL cache with stale fallback and request deduplication
- Resilience: circuit breaking and retries for upstream calls
- Cache warming for popular categories at startup

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.adapters: HTTP client for the Rezdy API.
- app.caching: Cache store, deduplicator, manager and warm plan.
"""
