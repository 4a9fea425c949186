"""
Entitlement routes: the caller's tier, per-sector access and upgrade path.

Tier is always read from the stored profile.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cortex.api.dependencies.auth import get_current_tier
from cortex.entitlements.capabilities import CAPABILITIES
from cortex.entitlements.policy import (
    has_capability,
    resolve_sector_access,
    should_show_upgrade_prompt,
)
from cortex.entitlements.tiers import (
    TIER_INFO,
    Sector,
    Tier,
    TierInfo,
    parse_sector,
    parse_tier,
    sector_of,
)
from cortex.platform.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["entitlements"])


class TierInfoResponse(BaseModel):
    tier: str
    display_name: str
    color: str
    monthly_price: int
    annual_price: int
    annual_savings: int
    sector: Optional[str]


class SectorAccessResponse(BaseModel):
    sector: str
    has_pro_access: bool
    recommended_upgrade: str
    can_upgrade: bool


class CapabilityAccessResponse(BaseModel):
    key: str
    name: str
    required_tier: str
    sector: str
    has_access: bool


class EntitlementsResponse(BaseModel):
    tier: str
    tier_info: TierInfoResponse
    sectors: List[SectorAccessResponse]
    capabilities: List[CapabilityAccessResponse]


class UpgradeCheckResponse(BaseModel):
    current: str
    required: str
    show_upgrade_prompt: bool


def _tier_info(info: TierInfo) -> TierInfoResponse:
    sector = sector_of(info.tier)
    return TierInfoResponse(
        tier=info.tier.value,
        display_name=info.display_name,
        color=info.color,
        monthly_price=info.monthly_price,
        annual_price=info.annual_price,
        annual_savings=info.annual_savings,
        sector=sector.value if sector else None,
    )


@router.get("/tiers", response_model=List[TierInfoResponse])
async def list_tiers():
    """Public tier catalog with display and pricing metadata."""
    return [_tier_info(info) for info in TIER_INFO.values()]


@router.get("/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(
    sector: Optional[str] = Query(None, description="Restrict to one sector"),
    tier: Tier = Depends(get_current_tier),
):
    """Resolved access for the caller across sectors and tools."""
    if sector is not None:
        try:
            sectors = [parse_sector(sector)]
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "sector"}) from e
    else:
        sectors = list(Sector)

    sector_access = []
    for s in sectors:
        access = resolve_sector_access(s, tier)
        sector_access.append(SectorAccessResponse(
            sector=access.sector.value,
            has_pro_access=access.has_pro_access,
            recommended_upgrade=access.recommended_upgrade.value,
            can_upgrade=access.can_upgrade,
        ))

    capabilities = [
        CapabilityAccessResponse(
            key=capability.key,
            name=capability.name,
            required_tier=capability.required_tier.value,
            sector=capability.sector.value,
            has_access=has_capability(capability, tier),
        )
        for capability in CAPABILITIES.values()
        if capability.sector in sectors
    ]

    return EntitlementsResponse(
        tier=tier.value,
        tier_info=_tier_info(TIER_INFO[tier]),
        sectors=sector_access,
        capabilities=capabilities,
    )


@router.get("/entitlements/upgrade-check", response_model=UpgradeCheckResponse)
async def upgrade_check(
    required: str = Query(..., description="Tier the caller is trying to reach"),
    tier: Tier = Depends(get_current_tier),
):
    """Whether the UI should show an upgrade prompt for ``required``."""
    try:
        required_tier = parse_tier(required)
    except ValueError as e:
        raise ValidationError(str(e), details={"field": "required"}) from e

    return UpgradeCheckResponse(
        current=tier.value,
        required=required_tier.value,
        show_upgrade_prompt=should_show_upgrade_prompt(tier, required_tier),
    )
