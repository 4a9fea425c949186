"""
Typed repository for saved scenarios.

All owner-scoped reads take the owner id explicitly; callers pass the id from
the verified token, never from the request body.
"""

from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cortex.models.scenario import Scenario
from cortex.repositories.profile_repository import RepositoryError


class ScenarioRepository:
    """Count/insert/delete over the scenarios table."""

    def __init__(self, session: Session):
        self.session = session

    def list_for_owner(self, owner_id: str) -> List[Scenario]:
        try:
            return list(
                self.session.execute(
                    select(Scenario)
                    .where(Scenario.user_id == owner_id)
                    .order_by(Scenario.created_at.desc(), Scenario.id)
                ).scalars()
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list scenarios: {e}") from e

    def count_for_tool(self, owner_id: str, tool_id: str) -> int:
        try:
            return self.session.execute(
                select(func.count(Scenario.id)).where(
                    Scenario.user_id == owner_id,
                    Scenario.tool_id == tool_id,
                )
            ).scalar_one()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to count scenarios: {e}") from e

    def insert(
        self,
        *,
        owner_id: str,
        tool_id: str,
        tool_name: str,
        inputs: Any,
        key_result: str = "",
    ) -> Scenario:
        scenario = Scenario(
            user_id=owner_id,
            tool_id=tool_id,
            tool_name=tool_name,
            inputs=inputs,
            key_result=key_result,
        )
        try:
            self.session.add(scenario)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to save scenario: {e}") from e
        return scenario

    def get_owned(self, scenario_id: str, owner_id: str) -> Optional[Scenario]:
        """Return the scenario only if it belongs to owner_id."""
        try:
            scenario = self.session.get(Scenario, scenario_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load scenario: {e}") from e
        if scenario is None or scenario.user_id != owner_id:
            return None
        return scenario

    def delete(self, scenario: Scenario) -> None:
        try:
            self.session.delete(scenario)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to delete scenario: {e}") from e

    def mark_public(self, scenario: Scenario) -> Scenario:
        scenario.is_public = True
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Failed to share scenario: {e}") from e
        return scenario

    def get_public_by_token(self, share_token: str) -> Optional[Scenario]:
        try:
            return self.session.execute(
                select(Scenario).where(
                    Scenario.share_token == share_token,
                    Scenario.is_public.is_(True),
                )
            ).scalars().first()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to load shared scenario: {e}") from e
