"""
Shared error handling for the Nexus platform edge.

Every error that can end a request at the gateway is a ``GatewayError``.
The app-level exception handler renders it as a small JSON body with a
human-readable ``error`` field; nothing internal (stack traces, upstream
URLs, connection errors) is ever placed in the body.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Standard error response format."""

    model_config = ConfigDict(extra="allow")

    error: str


class GatewayError(Exception):
    """Base exception for gateway and shared components."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "Internal server error",
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        # Rendered into the response body alongside ``error``.
        self.extra = extra or {}
        self.headers = headers or {}
        # Logged only.
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, **self.extra)


class Unauthenticated(GatewayError):
    """No bearer token (or no verified identity) on a protected route."""

    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Access Denied. No token provided.", **kwargs):
        super().__init__(message, **kwargs)


class InvalidToken(GatewayError):
    """Bearer token failed signature or expiry verification."""

    status_code = 400
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid Token", **kwargs):
        super().__init__(message, **kwargs)


class RateLimited(GatewayError):
    """Client exhausted its request budget for the current window."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str = "Too many requests, please try again later.", retry_after: int = 60, **kwargs):
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            message,
            extra={"retryAfter": self.retry_after},
            headers={"Retry-After": str(self.retry_after)},
            **kwargs,
        )


class InsufficientPlan(GatewayError):
    """Caller's subscription tier is below the route's minimum."""

    status_code = 403
    code = "INSUFFICIENT_PLAN"

    def __init__(self, required_tier: str, upgrade_url: str = "/pricing", **kwargs):
        self.required_tier = required_tier
        super().__init__(
            f"This feature requires the {required_tier.capitalize()} plan.",
            extra={"upgradeUrl": upgrade_url},
            **kwargs,
        )


class UpstreamUnavailable(GatewayError):
    """Downstream service could not be reached or timed out."""

    status_code = 502
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, service_label: str, **kwargs):
        self.service_label = service_label
        super().__init__(f"{service_label} Service Down", **kwargs)


class RateLimitStoreUnavailable(GatewayError):
    """The shared counter store failed; rate-limited routes cannot be served."""

    status_code = 503
    code = "RATE_LIMIT_STORE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable", **kwargs):
        super().__init__(message, **kwargs)


class NotFound(GatewayError):
    """No route matches the request path."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Route not found", **kwargs):
        super().__init__(message, **kwargs)
