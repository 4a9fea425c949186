"""Stripe billing integration."""

from cortex.integrations.stripe.billing_client import (
    CheckoutSession,
    StripeBillingClient,
    StripeBillingError,
    SubscriptionSnapshot,
    WebhookEvent,
    WebhookSignatureError,
    get_billing_client,
)

__all__ = [
    "CheckoutSession",
    "StripeBillingClient",
    "StripeBillingError",
    "SubscriptionSnapshot",
    "WebhookEvent",
    "WebhookSignatureError",
    "get_billing_client",
]
