"""Narrow, typed data access for profiles and scenarios."""

from cortex.repositories.profile_repository import (
    KEEP,
    BillingReferences,
    ProfileRepository,
    RepositoryError,
)
from cortex.repositories.scenario_repository import ScenarioRepository

__all__ = [
    "KEEP",
    "BillingReferences",
    "ProfileRepository",
    "RepositoryError",
    "ScenarioRepository",
]
