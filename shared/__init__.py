"""
Shared utilities for the Nexus platform edge.

This package aggregates common building blocks consumed by the gateway and
by Python downstream services:

- config: Base settings via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and JSON responses
- internal_trust: Gateway-origin check for downstream services
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
