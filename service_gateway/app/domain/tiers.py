"""
Subscription tier gate.
"""

from typing import Optional

from fastapi import Request

from shared.errors import InsufficientPlan, Unauthenticated
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .context import RequestContext

TIER_ORDER = ("free", "pro", "ultimate")
DEFAULT_TIER = TIER_ORDER[0]


def normalize_plan(plan: Optional[str]) -> str:
    """Map a token's plan claim onto a known tier; anything unknown is free."""
    if isinstance(plan, str):
        candidate = plan.strip().lower()
        if candidate in TIER_ORDER:
            return candidate
    return DEFAULT_TIER


def tier_rank(plan: Optional[str]) -> int:
    return TIER_ORDER.index(normalize_plan(plan))


class TierCheck:
    """Reject callers whose plan ranks below a route's minimum tier."""

    def __init__(self, required_tier: str, upgrade_url: str = "/pricing",
                 metrics: Optional[MetricsCollector] = None):
        if required_tier not in TIER_ORDER:
            raise ValueError(f"Unknown tier '{required_tier}'")
        self.required_tier = required_tier
        self.upgrade_url = upgrade_url
        self.metrics = metrics
        self.logger = get_logger("gateway.tiers")

    def allows(self, plan: Optional[str]) -> bool:
        return tier_rank(plan) >= TIER_ORDER.index(self.required_tier)

    async def __call__(self, request: Request, ctx: RequestContext) -> RequestContext:
        if ctx.identity is None:
            raise Unauthenticated("Unauthorized")

        if not self.allows(ctx.identity.plan):
            self.logger.info(
                "Plan below route minimum",
                route=ctx.route_name,
                plan=ctx.identity.plan,
                required=self.required_tier,
            )
            if self.metrics:
                self.metrics.increment_counter("tier_denials_total", route=ctx.route_name)
            raise InsufficientPlan(self.required_tier, upgrade_url=self.upgrade_url)

        return ctx
