"""
Shared utilities for the Storefront backend.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff policy for connection-level retries
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: Product factories, a manual clock and a Redis test double

Any cross-service logic should live here to avoid import cycles across
service packages. Runtime modules here must not import from service_* packages;
only test_helpers does, to build doubles of their interfaces.
"""
