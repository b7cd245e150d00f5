"""
Request-scoped state assembled while a request moves through the gateway.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Identity:
    """Caller identity decoded from a verified bearer token."""

    id: str
    email: Optional[str]
    plan: str


@dataclass
class RequestContext:
    """Per-request context.

    Created when a route matches and dropped once the response completes;
    it is never shared between requests.
    """

    route_name: str
    target_service: str
    client_ip: str
    request_id: Optional[str] = None
    identity: Optional[Identity] = None
    rate_limit_key: Optional[str] = None
    rate_limit_headers: Optional[dict] = None
