"""
Tier-aware save quota for scenarios.

Free tier: one saved scenario per (owner, tool). Pro/elite: unlimited.

The caller reads the existing count with a scoped count query right before
calling enforce_save_quota. This is check-then-act and therefore advisory
under concurrent duplicate saves from the same owner.
"""

import logging

from cortex.entitlements.policy import has_pro_access
from cortex.entitlements.tiers import Sector, Tier
from cortex.platform.errors import QuotaExceededError

logger = logging.getLogger(__name__)

FREE_SCENARIOS_PER_TOOL = 1


def can_save(owner_tier: Tier, existing_count: int, sector: Sector = Sector.FINANCE) -> bool:
    if has_pro_access(sector, owner_tier):
        return True
    return existing_count < FREE_SCENARIOS_PER_TOOL


def enforce_save_quota(
    owner_id: str,
    owner_tier: Tier,
    tool_id: str,
    existing_count: int,
    sector: Sector = Sector.FINANCE,
) -> None:
    """
    Raise QuotaExceededError (FREE_LIMIT_REACHED) when the save is not allowed.
    """
    if can_save(owner_tier, existing_count, sector):
        return

    logger.info(
        "Free scenario limit reached",
        extra={
            "user_id": owner_id,
            "tool_id": tool_id,
            "tier": owner_tier.value,
            "existing_count": existing_count,
        },
    )
    raise QuotaExceededError(details={"tool_id": tool_id, "limit": FREE_SCENARIOS_PER_TOOL})
