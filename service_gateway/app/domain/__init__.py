"""
Gateway domain types: request context, pipeline and tier gate.
"""

from .context import Identity, RequestContext
from .pipeline import Pipeline, Stage
from .tiers import TIER_ORDER, TierCheck, normalize_plan, tier_rank

__all__ = [
    "Identity",
    "Pipeline",
    "RequestContext",
    "Stage",
    "TIER_ORDER",
    "TierCheck",
    "normalize_plan",
    "tier_rank",
]
