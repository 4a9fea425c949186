"""
UserProfile model - the local record of an identity and its billing state.

Lifecycle:
1. Created on signup (create-user-record) with tier=free
2. Billing fields written by checkout, cancellation and Stripe webhooks
3. Deleted as part of account deletion, before the auth identity is removed

SECURITY:
- id is the identity provider's user id, taken from the verified token only
- Billing references are never cleared after a failed provider call
"""

from sqlalchemy import Column, String, Index
from sqlalchemy import Enum as SAEnum

from cortex.db_base import Base
from cortex.entitlements.tiers import Tier
from cortex.models.base import TimestampMixin


class SubscriptionStatus:
    """Subscription status values written locally (Stripe statuses pass through)."""
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"

    ENTITLED = frozenset({ACTIVE, TRIALING})


class UserProfile(Base, TimestampMixin):
    """
    Local profile row for an authenticated identity.

    Attributes:
        id: Identity provider user id (UUID string)
        email: Email at signup
        tier: Current subscription tier (closed set)
        subscription_status: Last known Stripe subscription status
        stripe_customer_id: Stripe customer reference, reused across checkouts
        stripe_subscription_id: Stripe subscription reference
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True, comment="Identity provider user id")

    email = Column(String(320), nullable=False, comment="Email address at signup")

    tier = Column(
        SAEnum(
            Tier,
            name="user_tier",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
        default=Tier.FREE,
        comment="Subscription tier"
    )

    subscription_status = Column(String(50), nullable=True, comment="Stripe subscription status")

    stripe_customer_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Stripe customer id (cus_...)"
    )

    stripe_subscription_id = Column(
        String(255),
        nullable=True,
        comment="Stripe subscription id (sub_...)"
    )

    __table_args__ = (
        Index("ix_users_stripe_subscription_id", "stripe_subscription_id"),
    )

    def __repr__(self) -> str:
        return f"<UserProfile(id={self.id}, tier={self.tier})>"
