"""
Stripe webhook handler.

Verifies the Stripe-Signature header against STRIPE_WEBHOOK_SECRET and
converges the owning profile through the shared sync operation.

Handled events:
- checkout.session.completed
- customer.subscription.created / updated / deleted

Other event types are acknowledged and ignored. A 500 makes Stripe retry,
which is what we want for local storage failures.
"""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from cortex.api.dependencies.providers import get_subscription_service
from cortex.middleware.rate_limit import RATE_LIMITS, rate_limit_dependency
from cortex.services.subscription_service import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    _rate_limit=Depends(rate_limit_dependency("webhook", RATE_LIMITS["webhook"], by="ip")),
    service: SubscriptionLifecycleService = Depends(get_subscription_service),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    # Blocks on Stripe and the database
    result = await run_in_threadpool(service.process_webhook, payload, signature)

    return {
        "received": True,
        "applied": bool(result and result.applied),
    }
