"""
Gateway-origin check for downstream services.

Downstream services only trust traffic that passed through the gateway. The
gateway stamps every proxied request with the internal trust secret; this
middleware rejects anything without it.
"""

import hmac
from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger

INTERNAL_SECRET_HEADER = "x-nexus-secret"


def secrets_match(received: Optional[str], expected: str) -> bool:
    """Constant-time comparison of the presented secret with the expected one."""
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


class InternalTrustMiddleware(BaseHTTPMiddleware):
    """Reject requests that do not carry the gateway's internal secret."""

    def __init__(self, app, secret: str, exempt_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        if not secret:
            raise ValueError("Internal trust secret must not be empty")
        self.secret = secret
        self.exempt_paths = frozenset(exempt_paths)
        self.logger = get_logger("shared.internal_trust")

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        if not secrets_match(request.headers.get(INTERNAL_SECRET_HEADER), self.secret):
            self.logger.warning(
                "Unauthorized direct access attempt",
                client_ip=request.client.host if request.client else "unknown",
                path=request.url.path,
            )
            return JSONResponse(
                status_code=403,
                content={"success": False, "message": "Access Denied: You are not the Gateway."},
            )

        return await call_next(request)
