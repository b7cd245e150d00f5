"""
Edge gateway for the Nexus platform.

Terminates client traffic, applies per-route rate limits, verifies bearer
tokens, optionally gates routes by plan tier and forwards requests to the
downstream services with trusted internal headers injected.
"""

import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import Request

from shared.base_service import BaseService

from .auth.verifier import TokenVerifier
from .config import GatewayConfig, get_config
from .ratelimit.fixed_window import FixedWindowRateLimiter, load_rate_limit_classes
from .routing.proxy import ReverseProxy
from .routing.router import GatewayRouter
from .routing.table import RouteTable

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        redis_client: Optional[Any] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("gateway", config or get_config())

        self.rate_limiter = FixedWindowRateLimiter(
            self.config.redis_url,
            load_rate_limit_classes(self.config.rate_limits_file),
            redis_client=redis_client,
            clock=clock,
            metrics=self.metrics,
        )
        self.verifier = TokenVerifier(
            self.config.jwt_secret,
            self.config.jwt_algorithm,
            metrics=self.metrics,
        )
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.upstream_timeout_seconds),
            follow_redirects=False,
        )
        self.proxy = ReverseProxy(
            self.http_client,
            self.config.service_urls(),
            self.config.internal_secret,
            metrics=self.metrics,
        )
        self.route_table = RouteTable().with_tier_gates(self.config.tier_gates)
        self.router = GatewayRouter(
            self.route_table,
            self.rate_limiter,
            self.verifier,
            self.proxy,
            trust_proxy_headers=self.config.trust_proxy_headers,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            self.logger.info(
                "Gateway started",
                routes=self.route_table.names(),
                tier_gates=dict(self.config.tier_gates),
                rate_classes=sorted(self.rate_limiter.classes),
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.http_client.aclose()
            await self.rate_limiter.close()

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _cors_origins(self) -> List[str]:
        return [self.config.frontend_url]

    def _setup_gateway_routes(self):
        """Set up gateway routes."""

        @self.app.get("/")
        async def root():
            """Liveness banner."""
            return {
                "service": "gateway",
                "message": "Secure Gateway Running",
                "version": "1.0.0",
            }

        # Registered last so /, /health and /metrics take precedence.
        @self.app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(request: Request, path: str):
            return await self.router.dispatch(request)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check gateway dependencies."""
        return {"redis": await self.rate_limiter.check_health()}


def create_app(config: Optional[GatewayConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = GatewayService(config, **kwargs)
    return service.app


def main():
    GatewayService().run()


if __name__ == "__main__":
    main()
