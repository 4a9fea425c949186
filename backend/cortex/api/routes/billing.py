"""
Billing API routes: checkout, portal and cancellation.

All routes require a verified bearer token.
user_id is NEVER accepted from the request body.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cortex.api.dependencies.auth import get_current_user
from cortex.api.dependencies.providers import get_subscription_service
from cortex.middleware.rate_limit import RATE_LIMITS, rate_limit_dependency
from cortex.platform.identity_gate import AuthenticatedUser
from cortex.services.subscription_service import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


# Request/Response Models

class CreateCheckoutRequest(BaseModel):
    """Request to create a checkout session."""
    priceId: str = Field(..., description="Stripe price id to subscribe to")


class CreateCheckoutResponse(BaseModel):
    sessionId: str
    url: Optional[str]


class PortalSessionResponse(BaseModel):
    url: str


class CancelSubscriptionResponse(BaseModel):
    success: bool
    outcome: str
    tier: str
    subscription_status: str


@router.post("/create-checkout-session", response_model=CreateCheckoutResponse)
def create_checkout_session(
    checkout_request: CreateCheckoutRequest,
    # Counted before authentication
    _rate_limit=Depends(rate_limit_dependency("checkout", RATE_LIMITS["checkout"], by="ip")),
    user: AuthenticatedUser = Depends(get_current_user),
    service: SubscriptionLifecycleService = Depends(get_subscription_service),
):
    """
    Create a Stripe Checkout Session for an allowed price.

    The price id is validated (format and allow-list) before Stripe is called.
    """
    session = service.create_checkout_session(user, checkout_request.priceId.strip())
    return CreateCheckoutResponse(sessionId=session.id, url=session.url)


@router.post("/create-portal-session", response_model=PortalSessionResponse)
def create_portal_session(
    user: AuthenticatedUser = Depends(get_current_user),
    _rate_limit=Depends(
        rate_limit_dependency("portal_session", RATE_LIMITS["portal_session"], by="user")
    ),
    service: SubscriptionLifecycleService = Depends(get_subscription_service),
):
    """Stripe billing portal URL for the caller's customer."""
    return PortalSessionResponse(url=service.create_portal_session(user))


@router.post("/cancel-subscription", response_model=CancelSubscriptionResponse)
def cancel_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    _rate_limit=Depends(
        rate_limit_dependency("cancel_subscription", RATE_LIMITS["cancel_subscription"], by="user")
    ),
    service: SubscriptionLifecycleService = Depends(get_subscription_service),
):
    """
    Cancel the caller's subscription and downgrade to free.

    Any user id in the body is ignored; identity comes from the token.
    """
    result = service.cancel_subscription(user)
    return CancelSubscriptionResponse(**result.to_dict())
