"""
Edge Gateway package for the Nexus platform.

The gateway fronts all client requests, enforcing:
- Rate limiting: Redis-backed fixed windows per route class and client IP
- Authentication: local HS256 bearer token verification
- Entitlements: optional minimum plan tier per route
- Trust: internal secret and caller identity headers on every proxied call

Structure:
- app.main: FastAPI app, edge middleware and the catch-all proxy route.
- app.config: pydantic-settings configuration.
- app.auth: bearer token verifier.
- app.ratelimit: fixed-window limiter.
- app.domain: request context, pipeline and tier gate.
- app.routing: route table, dispatcher and streaming reverse proxy.
"""
