"""
Shared utilities for the Pineapple Tours catalog services.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for upstream calls
- circuit_breaker: Resilient external call protection
- base_service: FastAPI application scaffolding

Do not import from service packages into shared/.
"""
