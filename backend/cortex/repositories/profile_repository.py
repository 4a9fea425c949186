"""
Typed repository for UserProfile rows.

Update operations take named, typed fields only. There is no generic
"update(payload: dict)" so untyped client data can never reach a write.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cortex.entitlements.tiers import Tier
from cortex.models.user_profile import UserProfile

logger = logging.getLogger(__name__)

# Sentinel for "leave this column unchanged" (None means "clear it")
KEEP = object()


class RepositoryError(Exception):
    """Raised when a profile store operation fails."""
    pass


@dataclass(frozen=True)
class BillingReferences:
    """Stored billing provider references for one profile."""
    user_id: str
    stripe_customer_id: Optional[str]
    stripe_subscription_id: Optional[str]


class ProfileRepository:
    """Keyed read/update/delete over the users table."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[UserProfile]:
        try:
            return self.session.get(UserProfile, user_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load profile {user_id}: {e}") from e

    def get_billing_references(self, user_id: str) -> Optional[BillingReferences]:
        profile = self.get(user_id)
        if profile is None:
            return None
        return BillingReferences(
            user_id=profile.id,
            stripe_customer_id=profile.stripe_customer_id,
            stripe_subscription_id=profile.stripe_subscription_id,
        )

    def find_by_subscription_id(self, subscription_id: str) -> Optional[UserProfile]:
        try:
            return self.session.execute(
                select(UserProfile).where(UserProfile.stripe_subscription_id == subscription_id)
            ).scalars().first()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to look up subscription {subscription_id}: {e}") from e

    def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        try:
            return self.session.execute(
                select(UserProfile).where(UserProfile.stripe_customer_id == customer_id)
            ).scalars().first()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to look up customer {customer_id}: {e}") from e

    def list_billing_customers(self) -> List[UserProfile]:
        """Profiles that have ever started a checkout (have a customer reference)."""
        try:
            return list(
                self.session.execute(
                    select(UserProfile)
                    .where(UserProfile.stripe_customer_id.isnot(None))
                    .order_by(UserProfile.id)
                ).scalars()
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list billing customers: {e}") from e

    def ensure(self, user_id: str, email: str) -> UserProfile:
        """
        Create a free-tier profile if none exists yet.

        Idempotent: an existing row is returned unchanged.
        """
        existing = self.get(user_id)
        if existing is not None:
            return existing

        profile = UserProfile(id=user_id, email=email, tier=Tier.FREE)
        try:
            self.session.add(profile)
            self.session.commit()
        except IntegrityError:
            # Concurrent signup created the row first
            self.session.rollback()
            existing = self.get(user_id)
            if existing is None:
                raise RepositoryError(f"Failed to create profile {user_id}")
            return existing
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to create profile {user_id}: {e}") from e
        return profile

    def update_billing_state(
        self,
        user_id: str,
        *,
        tier=KEEP,
        subscription_status=KEEP,
        stripe_customer_id=KEEP,
        stripe_subscription_id=KEEP,
    ) -> UserProfile:
        """
        Update billing columns of one profile.

        Each argument left as KEEP is untouched; passing None clears the column
        (not allowed for tier).

        Raises:
            RepositoryError: If the profile is missing or the write fails.
        """
        profile = self.get(user_id)
        if profile is None:
            raise RepositoryError(f"Profile {user_id} not found")

        if tier is not KEEP:
            if not isinstance(tier, Tier):
                raise TypeError("tier must be a Tier")
            profile.tier = tier
        if subscription_status is not KEEP:
            profile.subscription_status = subscription_status
        if stripe_customer_id is not KEEP:
            profile.stripe_customer_id = stripe_customer_id
        if stripe_subscription_id is not KEEP:
            profile.stripe_subscription_id = stripe_subscription_id

        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to update profile {user_id}: {e}") from e
        return profile

    def delete(self, user_id: str) -> bool:
        """Delete a profile row. Returns False if there was nothing to delete."""
        profile = self.get(user_id)
        if profile is None:
            return False
        try:
            self.session.delete(profile)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to delete profile {user_id}: {e}") from e
        return True
