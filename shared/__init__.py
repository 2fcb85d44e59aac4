"""
Shared utilities for the Chica's ordering API.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for outbound calls
- base_service: FastAPI application shell shared by services

Do not import from service_* packages into shared/.
"""
