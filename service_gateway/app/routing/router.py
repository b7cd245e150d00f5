"""
Request dispatch: match a route, run its pipeline, forward to the downstream.
"""

from typing import Dict, Optional

from fastapi import Request, Response

from shared.errors import NotFound
from shared.logging import get_logger, get_request_id
from shared.metrics import MetricsCollector

from ..auth.verifier import TokenVerifier
from ..domain.context import RequestContext
from ..domain.pipeline import Pipeline
from ..domain.tiers import TierCheck
from ..ratelimit.fixed_window import FixedWindowRateLimiter
from .proxy import ReverseProxy
from .table import RouteSpec, RouteTable, has_dot_segments


class GatewayRouter:
    """Dispatch requests through the static route table.

    One pipeline is built per route at startup, in the fixed order
    rate limit, token verification, tier check.
    """

    def __init__(
        self,
        table: RouteTable,
        rate_limiter: FixedWindowRateLimiter,
        verifier: TokenVerifier,
        proxy: ReverseProxy,
        *,
        trust_proxy_headers: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.table = table
        self.rate_limiter = rate_limiter
        self.verifier = verifier
        self.proxy = proxy
        self.trust_proxy_headers = trust_proxy_headers
        self.metrics = metrics
        self.logger = get_logger("gateway.router")
        self._pipelines: Dict[str, Pipeline] = {
            route.name: self._build_pipeline(route) for route in table.routes
        }

    def _build_pipeline(self, route: RouteSpec) -> Pipeline:
        stages = []
        if route.rate_class:
            stages.append(self.rate_limiter.stage(route.rate_class, self.client_ip))
        if route.requires_auth:
            stages.append(self.verifier)
        if route.min_tier:
            stages.append(TierCheck(route.min_tier, metrics=self.metrics))
        return Pipeline(stages)

    def pipeline_for(self, route_name: str) -> Pipeline:
        return self._pipelines[route_name]

    def client_ip(self, request: Request) -> str:
        """Caller address used as the rate limit identity."""
        if self.trust_proxy_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()
        if request.client:
            return request.client.host
        return "unknown"

    async def dispatch(self, request: Request) -> Response:
        raw_path = request.scope.get("raw_path") or b""
        if has_dot_segments(request.url.path) or has_dot_segments(raw_path.decode("latin-1")):
            request.state.metrics_endpoint = "unmatched"
            raise NotFound(details={"path": request.url.path, "reason": "dot_segment"})

        match = self.table.match(request.url.path)
        if match is None:
            request.state.metrics_endpoint = "unmatched"
            raise NotFound(details={"path": request.url.path})

        route = match.route
        request.state.metrics_endpoint = route.name
        ctx = RequestContext(
            route_name=route.name,
            target_service=route.service,
            client_ip=self.client_ip(request),
            request_id=get_request_id(),
        )

        ctx = await self._pipelines[route.name].run(request, ctx)
        return await self.proxy.forward(request, ctx, match)
