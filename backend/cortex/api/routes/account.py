"""
Account lifecycle routes: profile creation and account deletion.
"""

import logging

from fastapi import APIRouter, Depends

from cortex.api.dependencies.auth import get_current_user
from cortex.api.dependencies.providers import get_profile_repository, get_subscription_service
from cortex.middleware.rate_limit import RATE_LIMITS, rate_limit_dependency
from cortex.platform.errors import StorageError, ValidationError
from cortex.platform.identity_gate import AuthenticatedUser
from cortex.repositories.profile_repository import ProfileRepository, RepositoryError
from cortex.services.subscription_service import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["account"])


@router.post("/create-user-record")
def create_user_record(
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    """
    Create the caller's profile with tier free. Idempotent.

    id and email come from the verified identity, not the body.
    """
    if not user.email:
        raise ValidationError("Verified identity has no email address")

    try:
        profile = profiles.ensure(user.id, user.email)
    except RepositoryError as e:
        logger.error("Failed to create user record", extra={"user_id": user.id, "error": str(e)})
        raise StorageError("Failed to create user record") from e

    return {"success": True, "tier": profile.tier.value}


@router.post("/delete-account")
def delete_account(
    user: AuthenticatedUser = Depends(get_current_user),
    _rate_limit=Depends(
        rate_limit_dependency("delete_account", RATE_LIMITS["delete_account"], by="user")
    ),
    service: SubscriptionLifecycleService = Depends(get_subscription_service),
):
    """Irreversibly delete the caller's account, subscription and data."""
    result = service.delete_account(user)
    return result.to_dict()
