"""
Shared utilities for the edge request-processing core.

This package aggregates common building blocks consumed by every edge
service (BFF):

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/tenant correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error taxonomy and the error envelope
- retry: Retry decorators for idempotent authority reads
- circuit_breaker: Resilient external call protection
- base_service: FastAPI application scaffold

Do not import from edge_core into edge_shared.
"""
