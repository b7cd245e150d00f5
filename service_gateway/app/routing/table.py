"""
Static routing table for the gateway.

Routes are evaluated in registration order and the first match wins. A
protected variant of a prefix must therefore be registered before the
broader public rule that would otherwise shadow it (``/api/auth/me``
before ``/api/auth``). The table refuses to build if a route can never be
reached.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import unquote

from ..domain.tiers import TIER_ORDER

SERVICE_LABELS: Dict[str, str] = {
    "auth": "Auth",
    "resume": "Resume",
    "ats": "ATS",
    "compiler": "Compiler",
    "payment": "Payment",
    "interview": "Interview",
}


def prefix_matches(prefix: str, path: str) -> bool:
    """True when ``path`` is ``prefix`` itself or lies beneath it."""
    return path == prefix or path.startswith(prefix + "/")


def has_dot_segments(path: str) -> bool:
    """True when ``path`` has a ``.`` or ``..`` segment, percent-encoded or not.

    Clients and proxies collapse such segments after routing has already
    happened, so the downstream would see a different path than the one
    that was matched.
    """
    previous = None
    while path != previous:
        if any(segment in (".", "..") for segment in path.replace("\\", "/").split("/")):
            return True
        previous, path = path, unquote(path)
    return False


@dataclass(frozen=True)
class RouteSpec:
    """One routing rule: which prefixes go where, and which gates apply."""

    name: str
    prefixes: Tuple[str, ...]
    service: str
    strip_prefix: str
    requires_auth: bool = True
    rate_class: Optional[str] = None
    min_tier: Optional[str] = None

    def __post_init__(self):
        if not self.prefixes:
            raise ValueError(f"Route '{self.name}' has no prefixes")
        for prefix in self.prefixes:
            if not prefix.startswith("/") or prefix.endswith("/"):
                raise ValueError(f"Route '{self.name}' has malformed prefix '{prefix}'")
            if not prefix_matches(self.strip_prefix, prefix):
                raise ValueError(
                    f"Route '{self.name}' cannot strip '{self.strip_prefix}' from '{prefix}'"
                )
        if self.service not in SERVICE_LABELS:
            raise ValueError(f"Route '{self.name}' targets unknown service '{self.service}'")
        if self.min_tier is not None:
            if self.min_tier not in TIER_ORDER:
                raise ValueError(f"Route '{self.name}' has unknown tier '{self.min_tier}'")
            if not self.requires_auth:
                raise ValueError(f"Route '{self.name}' gates on tier but does not verify tokens")

    @property
    def service_label(self) -> str:
        return SERVICE_LABELS[self.service]

    def matches(self, path: str) -> bool:
        return any(prefix_matches(prefix, path) for prefix in self.prefixes)

    def rewrite(self, path: str) -> str:
        """Strip the route's prefix; the downstream sees a root-relative path."""
        remainder = path[len(self.strip_prefix):]
        return remainder if remainder.startswith("/") else "/" + remainder


DEFAULT_ROUTES: Tuple[RouteSpec, ...] = (
    RouteSpec(
        name="auth-protected",
        prefixes=("/api/auth/password", "/api/auth/me"),
        service="auth",
        strip_prefix="/api/auth",
        requires_auth=True,
        rate_class="general",
    ),
    RouteSpec(
        name="auth-public",
        prefixes=("/api/auth",),
        service="auth",
        strip_prefix="/api/auth",
        requires_auth=False,
        rate_class="general",
    ),
    RouteSpec(
        name="resume-ai",
        prefixes=("/api/resume/audit", "/api/resume/cover-letter"),
        service="resume",
        strip_prefix="/api/resume",
        rate_class="ai",
    ),
    RouteSpec(
        name="resume",
        prefixes=("/api/resume",),
        service="resume",
        strip_prefix="/api/resume",
        rate_class="general",
    ),
    RouteSpec(
        name="ats",
        prefixes=("/api/ats",),
        service="ats",
        strip_prefix="/api/ats",
        rate_class="ai",
    ),
    RouteSpec(
        name="compiler",
        prefixes=("/api/compiler",),
        service="compiler",
        strip_prefix="/api/compiler",
        rate_class="general",
    ),
    RouteSpec(
        name="payment-checkout",
        prefixes=("/api/payment/create-checkout-session",),
        service="payment",
        strip_prefix="/api/payment",
        rate_class="general",
    ),
    # Server-to-server callback from the payment provider: no end-user token
    # and no client rate limit, but still stamped with the internal secret.
    RouteSpec(
        name="payment-webhook",
        prefixes=("/api/payment/webhook",),
        service="payment",
        strip_prefix="/api/payment",
        requires_auth=False,
    ),
    RouteSpec(
        name="interview",
        prefixes=("/api/interview",),
        service="interview",
        strip_prefix="/api/interview",
        rate_class="general",
    ),
)


@dataclass(frozen=True)
class RouteMatch:
    route: RouteSpec
    upstream_path: str


@dataclass
class RouteTable:
    """Ordered, first-match routing table."""

    routes: Sequence[RouteSpec] = field(default_factory=lambda: DEFAULT_ROUTES)

    def __post_init__(self):
        self.routes = tuple(self.routes)
        self._validate()

    def _validate(self) -> None:
        names = [route.name for route in self.routes]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate route names: {sorted(duplicates)}")

        for index, route in enumerate(self.routes):
            for prefix in route.prefixes:
                for earlier in self.routes[:index]:
                    if earlier.matches(prefix):
                        raise ValueError(
                            f"Prefix '{prefix}' of route '{route.name}' is shadowed by "
                            f"earlier route '{earlier.name}'"
                        )

    def match(self, path: str) -> Optional[RouteMatch]:
        for route in self.routes:
            if route.matches(path):
                return RouteMatch(route=route, upstream_path=route.rewrite(path))
        return None

    def names(self) -> List[str]:
        return [route.name for route in self.routes]

    def with_tier_gates(self, tier_gates: Mapping[str, str]) -> "RouteTable":
        """Return a table with per-route minimum tiers applied from configuration."""
        unknown = set(tier_gates) - set(self.names())
        if unknown:
            raise ValueError(f"Tier gates reference unknown routes: {sorted(unknown)}")
        return RouteTable(
            [
                replace(route, min_tier=tier_gates[route.name]) if route.name in tier_gates else route
                for route in self.routes
            ]
        )

    def rate_classes(self) -> Iterable[str]:
        return {route.rate_class for route in self.routes if route.rate_class}
