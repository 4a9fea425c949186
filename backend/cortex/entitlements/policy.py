"""
Entitlement resolution over the tier partial order.

Pure, deterministic, total functions: no I/O and no failure modes.

Access rules:
- free capabilities are available to every tier
- elite gets every capability in every sector
- a pro capability is available to the pro tier of its own sector
"""

from dataclasses import dataclass

from cortex.entitlements.capabilities import Capability, RequiredTier
from cortex.entitlements.tiers import (
    Sector,
    Tier,
    dominates,
    pro_tier_for,
    rank,
)


def has_pro_access(sector: Sector, user_tier: Tier) -> bool:
    """Whether user_tier unlocks pro features of ``sector`` (feature-level gating)."""
    return dominates(user_tier, pro_tier_for(sector))


def has_capability(capability: Capability, user_tier: Tier) -> bool:
    """Whether user_tier may use a whole capability (e.g. launch a tool)."""
    if capability.required_tier == RequiredTier.FREE:
        return True
    return has_pro_access(capability.sector, user_tier)


def can_upgrade_to(current: Tier, target: Tier) -> bool:
    """
    True iff target ranks strictly above current.

    Sector pro tiers share rank 1, so moving between two sector pro tiers is
    never an upgrade; recommend_upgrade funnels that case to elite.
    """
    return rank(target) > rank(current)


def should_show_upgrade_prompt(current: Tier, required: Tier) -> bool:
    return can_upgrade_to(current, required)


def recommend_upgrade(current: Tier, required_sector: Sector) -> Tier:
    """Tier to pitch to a user who hit a locked capability in required_sector."""
    if current == Tier.FREE:
        return pro_tier_for(required_sector)

    # Holding another sector's pro tier, or already at/above this sector's
    # pro tier: the only step up is elite.
    return Tier.ELITE


@dataclass(frozen=True)
class SectorAccess:
    """Resolved access summary for one sector, as returned by the API."""
    sector: Sector
    tier: Tier
    has_pro_access: bool
    recommended_upgrade: Tier
    can_upgrade: bool


def resolve_sector_access(sector: Sector, user_tier: Tier) -> SectorAccess:
    entitled = has_pro_access(sector, user_tier)
    recommended = recommend_upgrade(user_tier, sector)
    return SectorAccess(
        sector=sector,
        tier=user_tier,
        has_pro_access=entitled,
        recommended_upgrade=recommended,
        can_upgrade=not entitled and can_upgrade_to(user_tier, recommended),
    )
