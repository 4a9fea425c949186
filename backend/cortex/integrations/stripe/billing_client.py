"""
Stripe billing client.

Thin wrapper over the stripe SDK returning plain dataclasses, so the services
never touch SDK objects and tests can substitute a fake client.

Every SDK failure is re-raised as StripeBillingError carrying Stripe's error
code (e.g. ``resource_missing``) so callers can branch on it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import stripe

from cortex.config.settings import StripeSettings, get_app_url

logger = logging.getLogger(__name__)

RESOURCE_MISSING = "resource_missing"


class StripeBillingError(Exception):
    """Raised when a Stripe call fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def resource_missing(self) -> bool:
        return self.code == RESOURCE_MISSING


class WebhookSignatureError(Exception):
    """Raised when a webhook payload fails signature verification."""
    pass


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """The fields of a Stripe subscription the reconciler needs."""
    id: str
    customer_id: Optional[str]
    status: str
    price_id: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str]


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    data_object: Any


def stripe_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _as_dict(obj: Any) -> Dict[str, str]:
    if not obj:
        return {}
    return {str(key): str(obj[key]) for key in obj.keys()}


def _expanded_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, "id")


def snapshot_from_stripe(subscription: Any) -> SubscriptionSnapshot:
    items = stripe_field(stripe_field(subscription, "items"), "data", [])
    price_id = None
    if items:
        price_id = _expanded_id(stripe_field(items[0], "price"))

    return SubscriptionSnapshot(
        id=stripe_field(subscription, "id"),
        customer_id=_expanded_id(stripe_field(subscription, "customer")),
        status=stripe_field(subscription, "status", ""),
        price_id=price_id,
        metadata=_as_dict(stripe_field(subscription, "metadata")),
    )


def _wrap(action: str, e: "stripe.StripeError", **context: Any) -> StripeBillingError:
    code = getattr(e, "code", None)
    logger.error(
        f"Stripe {action} failed",
        extra={
            "error": getattr(e, "user_message", None) or str(e),
            "error_type": type(e).__name__,
            "stripe_code": code,
            **context,
        },
    )
    return StripeBillingError(getattr(e, "user_message", None) or str(e), code=code)


class StripeBillingClient:
    """
    Client for the Stripe operations the billing lifecycle needs.
    """

    def __init__(self, settings: StripeSettings, app_url: Optional[str] = None):
        self.settings = settings
        self.app_url = (app_url or get_app_url()).rstrip("/")
        stripe.api_key = settings.secret_key

    def create_customer(self, email: Optional[str], user_id: str) -> str:
        """Create a customer tagged with our user id. Returns the customer id."""
        try:
            customer = stripe.Customer.create(
                email=email,
                metadata={"userId": user_id},
            )
        except stripe.StripeError as e:
            raise _wrap("customer creation", e, user_id=user_id) from e

        logger.info("Created Stripe customer", extra={"user_id": user_id})
        return stripe_field(customer, "id")

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
    ) -> CheckoutSession:
        """Create a subscription-mode Checkout Session for one price."""
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{self.app_url}/dashboard?success=true",
                cancel_url=f"{self.app_url}/pricing?canceled=true",
                metadata={"userId": user_id},
                subscription_data={"metadata": {"userId": user_id}},
            )
        except stripe.StripeError as e:
            raise _wrap("checkout session creation", e, user_id=user_id, price_id=price_id) from e

        return CheckoutSession(id=stripe_field(session, "id"), url=stripe_field(session, "url"))

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise _wrap("subscription retrieval", e, subscription_id=subscription_id) from e
        return snapshot_from_stripe(subscription)

    def cancel_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Cancel immediately. Raises StripeBillingError (check ``resource_missing``)."""
        try:
            subscription = stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            raise _wrap("subscription cancellation", e, subscription_id=subscription_id) from e

        logger.info("Canceled Stripe subscription", extra={"subscription_id": subscription_id})
        return snapshot_from_stripe(subscription)

    def list_active_subscriptions(self, customer_id: str) -> List[SubscriptionSnapshot]:
        """All non-canceled subscriptions of a customer."""
        try:
            page = stripe.Subscription.list(customer=customer_id, status="all", limit=100)
            return [
                snapshot_from_stripe(subscription)
                for subscription in page.auto_paging_iter()
                if stripe_field(subscription, "status") != "canceled"
            ]
        except stripe.StripeError as e:
            raise _wrap("subscription listing", e, customer_id=customer_id) from e

    def create_portal_session(self, customer_id: str) -> str:
        """Billing portal URL for a customer."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{self.app_url}/dashboard",
            )
        except stripe.StripeError as e:
            raise _wrap("portal session creation", e, customer_id=customer_id) from e
        return stripe_field(session, "url")

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify and parse a webhook payload.

        Raises:
            WebhookSignatureError: Missing secret/signature or verification failed
        """
        if not self.settings.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.settings.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}") from e

        return WebhookEvent(
            id=stripe_field(event, "id", ""),
            type=stripe_field(event, "type", ""),
            data_object=stripe_field(stripe_field(event, "data"), "object"),
        )


# Singleton instance
_billing_client: Optional[StripeBillingClient] = None


def get_billing_client() -> StripeBillingClient:
    """
    Get or create the Stripe billing client singleton.

    Raises:
        StripeBillingError: If Stripe is not configured
    """
    global _billing_client

    if _billing_client is None:
        settings = StripeSettings.from_env()
        if not settings:
            raise StripeBillingError("Stripe not configured. Set STRIPE_SECRET_KEY.")
        _billing_client = StripeBillingClient(settings)

    return _billing_client
