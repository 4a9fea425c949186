"""
Authentication and tier-gating dependencies.

Use on a route:
    user: AuthenticatedUser = Depends(get_current_user)
    _=Depends(require_pro_access(Sector.FINANCE))
    _=Depends(require_capability("roth-optimizer"))

Tier is read from the stored profile, never from the token or the request.
"""

import logging
from typing import Callable

from fastapi import Depends

from cortex.api.dependencies.providers import get_profile_repository
from cortex.entitlements.capabilities import get_capability
from cortex.entitlements.policy import has_capability, has_pro_access, recommend_upgrade
from cortex.entitlements.tiers import Sector, Tier
from cortex.platform.errors import ForbiddenError, StorageError
from cortex.platform.identity_gate import AuthenticatedUser, require_user
from cortex.repositories.profile_repository import ProfileRepository, RepositoryError

logger = logging.getLogger(__name__)

# Alias so routes read naturally; identical object keeps FastAPI's per-request cache
get_current_user = require_user


def get_current_tier(
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> Tier:
    """Caller's stored tier. A caller without a profile row is treated as free."""
    try:
        profile = profiles.get(user.id)
    except RepositoryError as e:
        logger.error("Tier lookup failed", extra={"user_id": user.id, "error": str(e)})
        raise StorageError("Failed to load account") from e
    return profile.tier if profile is not None else Tier.FREE


def _denied(message: str, user: AuthenticatedUser, tier: Tier, sector: Sector) -> ForbiddenError:
    recommended = recommend_upgrade(tier, sector)
    logger.warning(
        "Tier access denied",
        extra={"user_id": user.id, "tier": tier.value, "sector": sector.value},
    )
    return ForbiddenError(
        message,
        details={
            "tier": tier.value,
            "sector": sector.value,
            "recommended_upgrade": recommended.value,
        },
    )


def require_pro_access(sector: Sector) -> Callable:
    """Dependency factory: 403 unless the caller's tier unlocks ``sector`` pro features."""

    def _check(
        user: AuthenticatedUser = Depends(get_current_user),
        tier: Tier = Depends(get_current_tier),
    ) -> Tier:
        if not has_pro_access(sector, tier):
            raise _denied("This feature requires a Pro plan", user, tier, sector)
        return tier

    return _check


def require_capability(capability_key: str) -> Callable:
    """Dependency factory: 403 unless the caller's tier unlocks the capability."""
    capability = get_capability(capability_key)
    if capability is None:
        raise ValueError(f"Unknown capability: {capability_key}")

    def _check(
        user: AuthenticatedUser = Depends(get_current_user),
        tier: Tier = Depends(get_current_tier),
    ) -> Tier:
        if not has_capability(capability, tier):
            raise _denied(f"{capability.name} requires a Pro plan", user, tier, capability.sector)
        return tier

    return _check
