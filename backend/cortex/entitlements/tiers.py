"""
Subscription tiers, sectors and the tier partial order.

Tiers form a partial order per sector:
- free < <sector>_pro
- elite dominates every sector's pro tier
- two different sector pro tiers are incomparable

The ordering lives in data tables (SECTOR_PRO_TIERS, TIER_RANK) so adding a
sector is a table change, not new branching logic.
"""

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional


class Tier(str, enum.Enum):
    """Closed set of subscription tiers. No other value is valid."""
    FREE = "free"
    FINANCE_PRO = "finance_pro"
    ELITE = "elite"


class Sector(str, enum.Enum):
    """Namespaces grouping pro-gated capabilities."""
    FINANCE = "finance"


# Each sector's pro tier. Extend together with Tier when a sector is added.
SECTOR_PRO_TIERS: Mapping[Sector, Tier] = MappingProxyType({
    Sector.FINANCE: Tier.FINANCE_PRO,
})

# Numeric rank used for upgrade decisions. Every sector pro tier is rank 1.
TIER_RANK: Mapping[Tier, int] = MappingProxyType({
    Tier.FREE: 0,
    Tier.FINANCE_PRO: 1,
    Tier.ELITE: 2,
})


@dataclass(frozen=True)
class TierInfo:
    """Display and pricing metadata for a tier (prices in whole dollars)."""
    tier: Tier
    display_name: str
    color: str
    monthly_price: int
    annual_price: int

    @property
    def annual_savings(self) -> int:
        return self.monthly_price * 12 - self.annual_price


TIER_INFO: Mapping[Tier, TierInfo] = MappingProxyType({
    Tier.FREE: TierInfo(Tier.FREE, "Free", "slate", 0, 0),
    Tier.FINANCE_PRO: TierInfo(Tier.FINANCE_PRO, "Finance Pro", "indigo", 9, 90),
    Tier.ELITE: TierInfo(Tier.ELITE, "Elite", "purple", 29, 290),
})


def parse_tier(value) -> Tier:
    """
    Coerce a stored or client supplied value into a Tier.

    Raises:
        ValueError: If value is not one of the closed tier set.
    """
    if isinstance(value, Tier):
        return value
    try:
        return Tier(str(value).strip())
    except ValueError:
        raise ValueError(f"Unknown tier: {value!r}") from None


def parse_sector(value) -> Sector:
    """Coerce a value into a Sector, raising ValueError for unknown sectors."""
    if isinstance(value, Sector):
        return value
    try:
        return Sector(str(value).strip())
    except ValueError:
        raise ValueError(f"Unknown sector: {value!r}") from None


def pro_tier_for(sector: Sector) -> Tier:
    return SECTOR_PRO_TIERS[sector]


def sector_of(tier: Tier) -> Optional[Sector]:
    """Return the sector a sector-pro tier belongs to, or None for free/elite."""
    for sector, pro_tier in SECTOR_PRO_TIERS.items():
        if pro_tier == tier:
            return sector
    return None


def rank(tier: Tier) -> int:
    return TIER_RANK[tier]


def dominates(upper: Tier, lower: Tier) -> bool:
    """
    True if ``upper`` grants at least everything ``lower`` grants.

    Sector pro tiers of different sectors do not dominate each other.
    """
    if upper == lower or upper == Tier.ELITE or lower == Tier.FREE:
        return True
    return False
