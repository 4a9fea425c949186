"""
Saved scenario operations: list, save (quota-governed), delete, share.

SECURITY:
- owner ids come from the verified token only
- a scenario owned by someone else is reported as not found
"""

import logging
from typing import Any, List

from cortex.config.settings import get_app_url
from cortex.entitlements.capabilities import get_capability, sector_for_tool
from cortex.entitlements.policy import has_capability
from cortex.entitlements.quota import enforce_save_quota
from cortex.models.scenario import Scenario
from cortex.platform.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from cortex.platform.identity_gate import AuthenticatedUser
from cortex.repositories.profile_repository import ProfileRepository, RepositoryError
from cortex.repositories.scenario_repository import ScenarioRepository

logger = logging.getLogger(__name__)


def share_url_for(token: str) -> str:
    return f"{get_app_url()}/s/{token}"


class ScenarioService:
    """Owner-scoped scenario operations."""

    def __init__(self, profiles: ProfileRepository, scenarios: ScenarioRepository):
        self.profiles = profiles
        self.scenarios = scenarios

    def list_scenarios(self, user: AuthenticatedUser) -> List[Scenario]:
        try:
            return self.scenarios.list_for_owner(user.id)
        except RepositoryError as e:
            logger.error("Failed to list scenarios", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to load scenarios") from e

    def save_scenario(
        self,
        user: AuthenticatedUser,
        tool_id: str,
        tool_name: str,
        inputs: Any,
        key_result: str = "",
    ) -> Scenario:
        """
        Save a scenario, enforcing the free-tier per-tool quota.

        Raises:
            ValidationError: missing tool id/name
            NotFoundError: caller has no profile
            ForbiddenError: tool is a pro capability the caller's tier lacks
            QuotaExceededError: free tier already has a scenario for tool_id
        """
        tool_id = (tool_id or "").strip()
        tool_name = (tool_name or "").strip()
        if not tool_id or not tool_name:
            raise ValidationError("Missing required fields: tool_id, tool_name, inputs")

        try:
            profile = self.profiles.get(user.id)
            if profile is None:
                raise NotFoundError("User profile", message="User profile not found")
            existing = self.scenarios.count_for_tool(user.id, tool_id)
        except RepositoryError as e:
            logger.error("Failed to read quota state", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to save scenario") from e

        capability = get_capability(tool_id)
        if capability is not None and not has_capability(capability, profile.tier):
            raise ForbiddenError(
                f"{capability.name} requires a Pro plan",
                details={"tool_id": tool_id, "tier": profile.tier.value},
            )

        enforce_save_quota(
            owner_id=user.id,
            owner_tier=profile.tier,
            tool_id=tool_id,
            existing_count=existing,
            sector=sector_for_tool(tool_id),
        )

        if capability is None:
            logger.info("Saving scenario for uncatalogued tool", extra={"tool_id": tool_id})

        try:
            scenario = self.scenarios.insert(
                owner_id=user.id,
                tool_id=tool_id,
                tool_name=tool_name,
                inputs=inputs,
                key_result=key_result or "",
            )
        except RepositoryError as e:
            logger.error("Failed to save scenario", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to save scenario") from e

        logger.info(
            "Scenario saved",
            extra={"user_id": user.id, "tool_id": tool_id, "scenario_id": scenario.id},
        )
        return scenario

    def _get_owned(self, user: AuthenticatedUser, scenario_id: str) -> Scenario:
        if not scenario_id:
            raise ValidationError("Scenario ID required")
        try:
            scenario = self.scenarios.get_owned(scenario_id, user.id)
        except RepositoryError as e:
            raise StorageError("Failed to load scenario") from e
        if scenario is None:
            raise NotFoundError("Scenario", message="Scenario not found")
        return scenario

    def delete_scenario(self, user: AuthenticatedUser, scenario_id: str) -> None:
        scenario = self._get_owned(user, scenario_id)
        try:
            self.scenarios.delete(scenario)
        except RepositoryError as e:
            logger.error("Failed to delete scenario", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to delete scenario") from e

    def share_scenario(self, user: AuthenticatedUser, scenario_id: str) -> Scenario:
        """Make an owned scenario public. Sharing twice keeps the same token."""
        scenario = self._get_owned(user, scenario_id)
        if scenario.is_public:
            return scenario
        try:
            scenario = self.scenarios.mark_public(scenario)
        except RepositoryError as e:
            logger.error("Failed to share scenario", extra={"user_id": user.id, "error": str(e)})
            raise StorageError("Failed to share scenario") from e
        logger.info("Scenario shared", extra={"user_id": user.id, "scenario_id": scenario.id})
        return scenario

    def get_shared(self, share_token: str) -> Scenario:
        try:
            scenario = self.scenarios.get_public_by_token(share_token)
        except RepositoryError as e:
            raise StorageError("Failed to load scenario") from e
        if scenario is None:
            raise NotFoundError("Scenario", message="Scenario not found or not public")
        return scenario
