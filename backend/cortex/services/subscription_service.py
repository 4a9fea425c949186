"""
Subscription lifecycle reconciliation.

Keeps the local profile's billing state consistent with Stripe across
multi-step operations that can partially fail:

- create checkout session (customer created once, then reused)
- create billing portal session
- cancel subscription (self-heals stale references)
- delete account (best-effort billing cleanup, fatal identity deletion)
- sync from a provider subscription (shared by webhooks and the
  reconciliation job)

SECURITY:
- user ids MUST come from the verified token (AuthenticatedUser), never
  from request bodies
- a failed provider call never clears a stored billing reference

Usage:
    from cortex.services.subscription_service import SubscriptionLifecycleService

    service = SubscriptionLifecycleService(
        profiles=ProfileRepository(session),
        billing=get_billing_client(),
        identity=get_identity_client(),
        prices=PriceCatalog.from_env(),
    )
    result = service.cancel_subscription(user)
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from cortex.config.billing import PriceCatalog, is_valid_price_id
from cortex.entitlements.tiers import Tier
from cortex.integrations.stripe.billing_client import (
    CheckoutSession,
    StripeBillingError,
    SubscriptionSnapshot,
    WebhookEvent,
    WebhookSignatureError,
    snapshot_from_stripe,
    stripe_field,
)
from cortex.models.user_profile import SubscriptionStatus, UserProfile
from cortex.platform.errors import NotFoundError, ProviderError, StorageError, ValidationError
from cortex.platform.identity_gate import AuthenticatedUser
from cortex.platform.supabase_client import IdentityProviderError
from cortex.repositories.profile_repository import ProfileRepository, RepositoryError

logger = logging.getLogger(__name__)


class BillingProvider(Protocol):
    def create_customer(self, email: Optional[str], user_id: str) -> str: ...

    def create_checkout_session(
        self, customer_id: str, price_id: str, user_id: str
    ) -> CheckoutSession: ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot: ...

    def cancel_subscription(self, subscription_id: str) -> SubscriptionSnapshot: ...

    def list_active_subscriptions(self, customer_id: str) -> List[SubscriptionSnapshot]: ...

    def create_portal_session(self, customer_id: str) -> str: ...

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent: ...


class IdentityRemover(Protocol):
    def delete_identity(self, user_id: str) -> None: ...


# =============================================================================
# Results
# =============================================================================


class CancelOutcome:
    NO_SUBSCRIPTION = "no_subscription"
    ALREADY_CANCELED = "already_canceled"
    CANCELED = "canceled"


@dataclass
class CancelResult:
    outcome: str
    tier: Tier = Tier.FREE
    subscription_status: str = SubscriptionStatus.CANCELED
    local_state_updated: bool = True

    def to_dict(self) -> dict:
        return {
            "success": True,
            "outcome": self.outcome,
            "tier": self.tier.value,
            "subscription_status": self.subscription_status,
        }


@dataclass
class DeleteAccountResult:
    user_id: str
    subscription_canceled: bool = False
    profile_deleted: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "subscription_canceled": self.subscription_canceled,
            "profile_deleted": self.profile_deleted,
        }


@dataclass
class SyncResult:
    user_id: Optional[str]
    subscription_id: str
    tier: Optional[Tier] = None
    subscription_status: Optional[str] = None
    applied: bool = False
    reason: Optional[str] = None


# =============================================================================
# Service
# =============================================================================


class SubscriptionLifecycleService:
    """
    Orchestrates billing-state changes between Stripe and the profile store.

    ``billing`` may be None when Stripe is not configured; operations that
    need it then fail with ProviderError, operations that do not still work.
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        billing: Optional[BillingProvider],
        prices: PriceCatalog,
        identity: Optional[IdentityRemover] = None,
    ):
        self.profiles = profiles
        self.billing = billing
        self.prices = prices
        self.identity = identity

    def _require_billing(self) -> BillingProvider:
        if self.billing is None:
            raise ProviderError("Billing is not configured", provider="stripe")
        return self.billing

    def _load_profile(self, user_id: str) -> UserProfile:
        try:
            profile = self.profiles.get(user_id)
        except RepositoryError as e:
            logger.error("Profile lookup failed", extra={"user_id": user_id, "error": str(e)})
            raise StorageError("Failed to load account") from e
        if profile is None:
            raise NotFoundError("User profile", message="User profile not found")
        return profile

    # ------------------------------------------------------------------
    # Checkout / portal
    # ------------------------------------------------------------------

    def create_checkout_session(self, user: AuthenticatedUser, price_id: str) -> CheckoutSession:
        """
        Create a Checkout Session for an allowed price.

        Validation happens before any provider call. A customer is created
        and persisted only when the profile has no customer reference yet.
        """
        if not is_valid_price_id(price_id):
            raise ValidationError("Invalid price ID format", details={"field": "priceId"})
        if not self.prices.is_allowed(price_id):
            logger.warning(
                "Checkout attempted with unknown price",
                extra={"user_id": user.id, "price_id": price_id},
            )
            raise ValidationError("Invalid price ID", details={"field": "priceId"})

        profile = self._load_profile(user.id)
        billing = self._require_billing()

        customer_id = profile.stripe_customer_id
        if not customer_id:
            try:
                customer_id = billing.create_customer(profile.email or user.email, user.id)
            except StripeBillingError as e:
                raise ProviderError("Failed to create checkout session", provider="stripe") from e
            try:
                self.profiles.update_billing_state(user.id, stripe_customer_id=customer_id)
            except RepositoryError as e:
                logger.error(
                    "Failed to persist Stripe customer",
                    extra={"user_id": user.id, "error": str(e)},
                )
                raise StorageError("Failed to save billing customer") from e

        try:
            session = billing.create_checkout_session(customer_id, price_id, user.id)
        except StripeBillingError as e:
            raise ProviderError("Failed to create checkout session", provider="stripe") from e

        logger.info(
            "Checkout session created",
            extra={"user_id": user.id, "price_id": price_id, "session_id": session.id},
        )
        return session

    def create_portal_session(self, user: AuthenticatedUser) -> str:
        profile = self._load_profile(user.id)
        if not profile.stripe_customer_id:
            raise NotFoundError("Subscription", message="No subscription found")

        try:
            return self._require_billing().create_portal_session(profile.stripe_customer_id)
        except StripeBillingError as e:
            raise ProviderError("Failed to create portal session", provider="stripe") from e

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def _mark_canceled(self, user_id: str, clear_subscription: bool) -> None:
        changes = {
            "tier": Tier.FREE,
            "subscription_status": SubscriptionStatus.CANCELED,
        }
        if clear_subscription:
            changes["stripe_subscription_id"] = None
        try:
            self.profiles.update_billing_state(user_id, **changes)
        except RepositoryError as e:
            logger.error(
                "Failed to record cancellation",
                extra={"user_id": user_id, "error": str(e)},
            )
            raise StorageError("Failed to update subscription status") from e

    def cancel_subscription(self, user: AuthenticatedUser) -> CancelResult:
        """
        Cancel the caller's subscription and downgrade them to free.

        1. no subscription reference -> downgrade locally, no provider call
        2. provider says resource_missing -> downgrade and clear the reference
        3. provider success -> downgrade; a local failure is logged only
        4. any other provider error -> ProviderError, local state untouched
        """
        try:
            refs = self.profiles.get_billing_references(user.id)
        except RepositoryError as e:
            logger.error("Billing lookup failed", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to load account") from e
        if refs is None:
            raise NotFoundError("User profile", message="User profile not found")

        subscription_id = refs.stripe_subscription_id
        if not subscription_id:
            logger.info("Cancel without subscription; downgrading locally", extra={"user_id": user.id})
            self._mark_canceled(user.id, clear_subscription=False)
            return CancelResult(outcome=CancelOutcome.NO_SUBSCRIPTION)

        billing = self._require_billing()
        try:
            billing.cancel_subscription(subscription_id)
        except StripeBillingError as e:
            if not e.resource_missing:
                logger.error(
                    "Subscription cancellation failed",
                    extra={"user_id": user.id, "subscription_id": subscription_id, "stripe_code": e.code},
                )
                raise ProviderError("Failed to cancel subscription", provider="stripe") from e

            logger.warning(
                "Stored subscription no longer exists at Stripe; clearing reference",
                extra={"user_id": user.id, "subscription_id": subscription_id},
            )
            self._mark_canceled(user.id, clear_subscription=True)
            return CancelResult(outcome=CancelOutcome.ALREADY_CANCELED)

        try:
            self.profiles.update_billing_state(
                user.id,
                tier=Tier.FREE,
                subscription_status=SubscriptionStatus.CANCELED,
            )
        except RepositoryError as e:
            # Stripe already canceled; the subscription.deleted webhook converges this row
            logger.error(
                "Subscription canceled but local update failed",
                extra={"user_id": user.id, "subscription_id": subscription_id, "error": str(e)},
            )
            return CancelResult(outcome=CancelOutcome.CANCELED, local_state_updated=False)

        logger.info(
            "Subscription canceled",
            extra={"user_id": user.id, "subscription_id": subscription_id},
        )
        return CancelResult(outcome=CancelOutcome.CANCELED)

    # ------------------------------------------------------------------
    # Delete account
    # ------------------------------------------------------------------

    def delete_account(self, user: AuthenticatedUser) -> DeleteAccountResult:
        """
        Irreversibly delete the caller's account.

        Steps run strictly in order. Billing lookup, Stripe cancellation and
        profile deletion are best-effort (logged, execution continues).
        Identity deletion is fatal: if it fails the caller gets a 500.
        """
        result = DeleteAccountResult(user_id=user.id)

        # Step 1: billing lookup
        refs = None
        try:
            refs = self.profiles.get_billing_references(user.id)
        except RepositoryError as e:
            logger.error("Delete account: billing lookup failed", extra={"user_id": user.id, "error": str(e)})
            result.warnings.append("billing_lookup_failed")

        # Step 2: cancel at Stripe
        if refs is not None and refs.stripe_subscription_id:
            if self.billing is None:
                logger.error("Delete account: billing not configured", extra={"user_id": user.id})
                result.warnings.append("subscription_cancel_failed")
            else:
                try:
                    self.billing.cancel_subscription(refs.stripe_subscription_id)
                    result.subscription_canceled = True
                except StripeBillingError as e:
                    logger.error(
                        "Delete account: subscription cancellation failed",
                        extra={
                            "user_id": user.id,
                            "subscription_id": refs.stripe_subscription_id,
                            "stripe_code": e.code,
                        },
                    )
                    result.warnings.append("subscription_cancel_failed")

        # Step 3: delete profile row (scenarios cascade)
        try:
            result.profile_deleted = self.profiles.delete(user.id)
        except RepositoryError as e:
            logger.error("Delete account: profile deletion failed", extra={"user_id": user.id, "error": str(e)})
            result.warnings.append("profile_delete_failed")

        # Step 4: delete identity
        if self.identity is None:
            raise ProviderError("Failed to delete account", provider="supabase")
        try:
            self.identity.delete_identity(user.id)
        except IdentityProviderError as e:
            logger.error("Delete account: identity deletion failed", extra={"user_id": user.id, "error": str(e)})
            raise ProviderError("Failed to delete account", provider="supabase") from e

        logger.info(
            "Account deleted",
            extra={
                "user_id": user.id,
                "subscription_canceled": result.subscription_canceled,
                "profile_deleted": result.profile_deleted,
                "warnings": result.warnings,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Sync from Stripe
    # ------------------------------------------------------------------

    def _tier_for_snapshot(self, snapshot: SubscriptionSnapshot) -> Tier:
        if snapshot.status not in SubscriptionStatus.ENTITLED:
            return Tier.FREE
        return self.prices.tier_for_price(snapshot.price_id) or Tier.FREE

    def _find_profile(
        self, snapshot: SubscriptionSnapshot, user_id: Optional[str]
    ) -> Optional[UserProfile]:
        user_id = user_id or snapshot.metadata.get("userId")
        if user_id:
            profile = self.profiles.get(user_id)
            if profile is not None:
                return profile
        profile = self.profiles.find_by_subscription_id(snapshot.id)
        if profile is not None:
            return profile
        if snapshot.customer_id:
            return self.profiles.find_by_customer_id(snapshot.customer_id)
        return None

    def sync_from_subscription(
        self,
        snapshot: SubscriptionSnapshot,
        user_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Converge one profile onto a Stripe subscription. Idempotent.

        Active/trialing subscriptions grant the tier of their price; any other
        status downgrades to free. A non-entitled snapshot of a subscription
        other than the one stored on the profile is ignored, so a late event
        for an old subscription cannot downgrade a newer one.

        Raises:
            StorageError: profile store failure (webhook is retried by Stripe)
        """
        result = SyncResult(user_id=None, subscription_id=snapshot.id)
        try:
            profile = self._find_profile(snapshot, user_id)
        except RepositoryError as e:
            logger.error("Sync: profile lookup failed", extra={"subscription_id": snapshot.id, "error": str(e)})
            raise StorageError("Failed to load account") from e

        if profile is None:
            logger.warning(
                "Sync: no profile for subscription",
                extra={"subscription_id": snapshot.id, "customer_id": snapshot.customer_id},
            )
            result.reason = "profile_not_found"
            return result

        result.user_id = profile.id
        tier = self._tier_for_snapshot(snapshot)
        entitled = snapshot.status in SubscriptionStatus.ENTITLED

        if (
            not entitled
            and profile.stripe_subscription_id
            and profile.stripe_subscription_id != snapshot.id
        ):
            logger.info(
                "Sync: ignoring inactive subscription that is not the current one",
                extra={
                    "user_id": profile.id,
                    "subscription_id": snapshot.id,
                    "current_subscription_id": profile.stripe_subscription_id,
                },
            )
            result.reason = "superseded"
            return result

        if entitled and self.prices.tier_for_price(snapshot.price_id) is None:
            logger.warning(
                "Sync: active subscription on an unknown price; granting free",
                extra={"user_id": profile.id, "subscription_id": snapshot.id, "price_id": snapshot.price_id},
            )

        changes = {
            "tier": tier,
            "subscription_status": snapshot.status,
            "stripe_subscription_id": snapshot.id,
        }
        if snapshot.customer_id:
            changes["stripe_customer_id"] = snapshot.customer_id

        try:
            self.profiles.update_billing_state(profile.id, **changes)
        except RepositoryError as e:
            logger.error("Sync: profile update failed", extra={"user_id": profile.id, "error": str(e)})
            raise StorageError("Failed to update subscription state") from e

        logger.info(
            "Sync: profile converged",
            extra={
                "user_id": profile.id,
                "subscription_id": snapshot.id,
                "tier": tier.value,
                "status": snapshot.status,
            },
        )
        result.tier = tier
        result.subscription_status = snapshot.status
        result.applied = True
        return result

    def reconcile_customer(self, profile: UserProfile) -> SyncResult:
        """
        Converge a profile from Stripe's list of the customer's subscriptions.

        With no live subscription left, a paid profile is downgraded to free.
        The same happens when the stored subscription is gone and only other,
        non-entitled subscriptions remain (e.g. an incomplete checkout retry).
        """
        billing = self._require_billing()
        try:
            subscriptions = billing.list_active_subscriptions(profile.stripe_customer_id)
        except StripeBillingError as e:
            raise ProviderError("Failed to list subscriptions", provider="stripe") from e

        entitled = [s for s in subscriptions if s.status in SubscriptionStatus.ENTITLED]
        if entitled:
            current = next(
                (s for s in entitled if s.id == profile.stripe_subscription_id),
                entitled[0],
            )
            return self.sync_from_subscription(current, user_id=profile.id)
        stored_id = profile.stripe_subscription_id
        if subscriptions:
            current = next((s for s in subscriptions if s.id == stored_id), None)
            if current is not None or not stored_id:
                return self.sync_from_subscription(current or subscriptions[0], user_id=profile.id)

        result = SyncResult(user_id=profile.id, subscription_id=stored_id or "")
        if profile.tier == Tier.FREE:
            result.reason = "no_subscription"
            return result

        # A stale reference would make the superseded guard ignore the remaining subscriptions
        self._mark_canceled(profile.id, clear_subscription=bool(subscriptions))
        logger.info(
            "Reconcile: no live subscription; downgraded to free",
            extra={
                "user_id": profile.id,
                "customer_id": profile.stripe_customer_id,
                "stale_subscription_id": stored_id,
            },
        )
        result.tier = Tier.FREE
        result.subscription_status = SubscriptionStatus.CANCELED
        result.applied = True
        return result

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def process_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[SyncResult]:
        """Verify a raw Stripe webhook and apply it."""
        billing = self._require_billing()
        try:
            event = billing.construct_event(payload, signature)
        except WebhookSignatureError as e:
            logger.warning("Stripe webhook rejected", extra={"error": str(e)})
            raise ValidationError("Webhook signature verification failed") from e

        logger.info("Stripe event verified", extra={"event_type": event.type, "event_id": event.id})
        return self.handle_webhook_event(event)

    def handle_webhook_event(self, event: WebhookEvent) -> Optional[SyncResult]:
        """
        Apply a verified Stripe event. Unknown event types are acknowledged
        and ignored (returns None).
        """
        if event.type == "checkout.session.completed":
            session = event.data_object
            subscription_id = stripe_field(session, "subscription")
            if not isinstance(subscription_id, str):
                subscription_id = stripe_field(subscription_id, "id")
            if not subscription_id:
                logger.warning("Checkout session without subscription", extra={"event_id": event.id})
                return None

            try:
                snapshot = self._require_billing().retrieve_subscription(subscription_id)
            except StripeBillingError as e:
                raise ProviderError("Failed to retrieve subscription", provider="stripe") from e
            metadata = stripe_field(session, "metadata") or {}
            return self.sync_from_subscription(snapshot, user_id=stripe_field(metadata, "userId"))

        if event.type in (
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            snapshot = snapshot_from_stripe(event.data_object)
            if event.type == "customer.subscription.deleted" and snapshot.status != SubscriptionStatus.CANCELED:
                snapshot = SubscriptionSnapshot(
                    id=snapshot.id,
                    customer_id=snapshot.customer_id,
                    status=SubscriptionStatus.CANCELED,
                    price_id=snapshot.price_id,
                    metadata=snapshot.metadata,
                )
            return self.sync_from_subscription(snapshot)

        logger.info("Ignoring unhandled Stripe event", extra={"event_type": event.type, "event_id": event.id})
        return None