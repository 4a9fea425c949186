"""
Database models for profiles and saved scenarios.
"""

from cortex.models.base import TimestampMixin, generate_uuid
from cortex.models.user_profile import UserProfile, SubscriptionStatus
from cortex.models.scenario import Scenario, generate_share_token

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "UserProfile",
    "SubscriptionStatus",
    "Scenario",
    "generate_share_token",
]
