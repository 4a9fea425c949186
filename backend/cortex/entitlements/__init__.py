"""
Tier-based entitlements for calculator capabilities.

This package provides:
- Tier / Sector enums and the tier partial order (tiers)
- Capability catalog with per-tool required tier (capabilities)
- Pure resolution functions: has_capability, has_pro_access,
  can_upgrade_to, recommend_upgrade (policy)
- Free-tier scenario save quota (quota)
"""

from cortex.entitlements.tiers import (
    Sector,
    Tier,
    TierInfo,
    TIER_INFO,
    parse_sector,
    parse_tier,
)
from cortex.entitlements.capabilities import (
    CAPABILITIES,
    Capability,
    RequiredTier,
    get_capability,
)
from cortex.entitlements.policy import (
    SectorAccess,
    can_upgrade_to,
    has_capability,
    has_pro_access,
    recommend_upgrade,
    resolve_sector_access,
    should_show_upgrade_prompt,
)
from cortex.entitlements.quota import can_save, enforce_save_quota

__all__ = [
    # Tiers
    "Sector",
    "Tier",
    "TierInfo",
    "TIER_INFO",
    "parse_sector",
    "parse_tier",
    # Capabilities
    "CAPABILITIES",
    "Capability",
    "RequiredTier",
    "get_capability",
    # Policy
    "SectorAccess",
    "can_upgrade_to",
    "has_capability",
    "has_pro_access",
    "recommend_upgrade",
    "resolve_sector_access",
    "should_show_upgrade_prompt",
    # Quota
    "can_save",
    "enforce_save_quota",
]
