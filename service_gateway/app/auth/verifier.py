"""
Bearer token verification for the gateway.

Tokens are HMAC-signed JWTs minted by the Auth service. The gateway only
checks signature and expiry against the shared signing secret; it never
calls the Auth service and keeps no revocation list.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from shared.errors import InvalidToken, Unauthenticated
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..domain.context import Identity, RequestContext
from ..domain.tiers import normalize_plan


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from a ``Bearer <token>`` header value, if present."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class TokenVerifier:
    """Verify bearer tokens and attach the caller identity to the request context."""

    def __init__(self, secret: str, algorithm: str = "HS256", *,
                 metrics: Optional[MetricsCollector] = None) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.metrics = metrics
        self.logger = get_logger("gateway.auth")

    def verify(self, token: str) -> Identity:
        """Validate signature and expiry and return the identity carried by the token."""
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_aud": False, "require_exp": True},
            )
        except ExpiredSignatureError as exc:
            self._record_failure("expired")
            raise InvalidToken(details={"reason": "expired"}) from exc
        except JWTError as exc:
            self._record_failure("invalid")
            raise InvalidToken(details={"reason": "invalid", "error": str(exc)}) from exc

        return self._identity_from_claims(claims)

    async def __call__(self, request: Request, ctx: RequestContext) -> RequestContext:
        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is None:
            self._record_failure("missing")
            raise Unauthenticated()

        identity = self.verify(token)
        set_user_context(identity.id)
        ctx.identity = identity
        # Cache on the request for handlers that only see the Request.
        request.state.identity = identity
        return ctx

    def _identity_from_claims(self, claims: Dict[str, Any]) -> Identity:
        subject = claims.get("id") or claims.get("sub")
        if not isinstance(subject, (str, int)) or subject == "":
            self._record_failure("no_subject")
            raise InvalidToken(details={"reason": "no_subject"})

        email = claims.get("email")
        return Identity(
            id=str(subject),
            email=email if isinstance(email, str) else None,
            plan=normalize_plan(claims.get("plan")),
        )

    def _record_failure(self, reason: str) -> None:
        self.logger.info("Bearer token rejected", reason=reason)
        if self.metrics:
            self.metrics.increment_counter("auth_failures_total", reason=reason)
