"""
Shared utilities for the compliance data layer.

This package aggregates common building blocks consumed by the client:

- config: Client configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Caller-configured retry
- circuit_breaker: Resilient REST API call protection

Do not import from compliance_client into shared/.
"""
