"""
Streaming reverse proxy to downstream services.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import httpx
from fastapi import Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from shared.errors import UpstreamUnavailable
from shared.internal_trust import INTERNAL_SECRET_HEADER
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.context import RequestContext
from .table import RouteMatch, prefix_matches

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Only the gateway may set these; client-supplied copies are dropped.
TRUSTED_HEADERS = frozenset({
    INTERNAL_SECRET_HEADER,
    "x-user-id",
    "x-user-email",
    "x-user-plan",
})

RawHeaders = List[Tuple[bytes, bytes]]


def _connection_tokens(headers: Iterable[Tuple[bytes, bytes]]) -> set:
    tokens = set()
    for key, value in headers:
        if key.lower() == b"connection":
            tokens.update(token.strip().lower() for token in value.decode("latin-1").split(","))
    return tokens


def filter_headers(raw_headers: Iterable[Tuple[bytes, bytes]], drop: Iterable[str] = ()) -> RawHeaders:
    """Drop hop-by-hop headers (plus ``drop``), keeping repeated headers intact."""
    raw_headers = list(raw_headers)
    excluded = set(HOP_BY_HOP_HEADERS) | _connection_tokens(raw_headers) | {name.lower() for name in drop}
    return [
        (key.lower(), value)
        for key, value in raw_headers
        if key.decode("latin-1").lower() not in excluded
    ]


class ReverseProxy:
    """Forward a matched request to its downstream service and stream the reply back."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        service_urls: Dict[str, str],
        internal_secret: str,
        *,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.service_urls = dict(service_urls)
        self.internal_secret = internal_secret
        self.metrics = metrics
        self.logger = get_logger("gateway.proxy")

    def upstream_url(self, request: Request, match: RouteMatch) -> str:
        """Downstream URL for ``request``, preserving the original encoding and query."""
        raw_path = request.scope.get("raw_path")
        path = match.upstream_path
        if raw_path:
            decoded = raw_path.decode("latin-1")
            if prefix_matches(match.route.strip_prefix, decoded):
                path = match.route.rewrite(decoded)

        url = self.service_urls[match.route.service] + path
        query = request.url.query
        return f"{url}?{query}" if query else url

    def upstream_headers(self, request: Request, ctx: RequestContext) -> RawHeaders:
        """Client headers minus hop-by-hop and spoofable ones, plus injected trust headers."""
        headers = filter_headers(request.headers.raw, drop=TRUSTED_HEADERS | {"host"})

        injected = {INTERNAL_SECRET_HEADER: self.internal_secret}
        if ctx.identity is not None:
            injected["x-user-id"] = ctx.identity.id
            if ctx.identity.email:
                injected["x-user-email"] = ctx.identity.email
            injected["x-user-plan"] = ctx.identity.plan
        if ctx.request_id:
            injected["x-request-id"] = ctx.request_id

        forwarded_for = request.headers.get("x-forwarded-for")
        injected["x-forwarded-for"] = f"{forwarded_for}, {ctx.client_ip}" if forwarded_for else ctx.client_ip

        headers = [(key, value) for key, value in headers if key not in (b"x-request-id", b"x-forwarded-for")]
        if not any(key == b"accept-encoding" for key, _ in headers):
            # Otherwise httpx adds its own gzip default and the raw compressed
            # body is relayed to a client that never asked for it.
            headers.append((b"accept-encoding", b"identity"))
        headers.extend((name.encode("latin-1"), value.encode("latin-1")) for name, value in injected.items())
        return headers

    async def forward(self, request: Request, ctx: RequestContext, match: RouteMatch) -> Response:
        route = match.route
        url = self.upstream_url(request, match)
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers

        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=self.upstream_headers(request, ctx),
            content=request.stream() if has_body else None,
        )

        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except ClientDisconnect:
            self.logger.info("Client disconnected before upstream call completed", route=route.name)
            return Response(status_code=499)
        except httpx.TransportError as exc:
            # Timeouts are TransportErrors too; detail is logged, never returned.
            self.logger.error(
                "Upstream request failed",
                service=route.service,
                route=route.name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if self.metrics:
                self.metrics.increment_counter("upstream_errors_total", service=route.service)
            raise UpstreamUnavailable(route.service_label, details={"error": type(exc).__name__}) from exc

        if self.metrics:
            self.metrics.increment_counter(
                "proxied_requests_total",
                service=route.service,
                status_code=str(upstream.status_code),
            )
        self.logger.debug(
            "Proxied request",
            route=route.name,
            service=route.service,
            status_code=upstream.status_code,
        )

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = filter_headers(upstream.headers.raw)
        for name, value in (ctx.rate_limit_headers or {}).items():
            response.headers[name] = value
        return response
