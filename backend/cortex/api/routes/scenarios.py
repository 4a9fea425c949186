"""
Saved scenario routes.

Free tier: one saved scenario per tool (403 FREE_LIMIT_REACHED beyond that).
Shared scenarios are readable by anyone holding the share token.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cortex.api.dependencies.auth import get_current_user
from cortex.api.dependencies.providers import get_scenario_service
from cortex.middleware.rate_limit import RATE_LIMITS, rate_limit_dependency
from cortex.models.scenario import Scenario
from cortex.platform.identity_gate import AuthenticatedUser
from cortex.services.scenario_service import ScenarioService, share_url_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scenarios", tags=["scenarios"])


# Request/Response Models

class SaveScenarioRequest(BaseModel):
    tool_id: str = Field(..., min_length=1)
    tool_name: str = Field(..., min_length=1)
    inputs: Dict[str, Any]
    key_result: Optional[str] = None


class ScenarioResponse(BaseModel):
    id: str
    tool_id: str
    tool_name: str
    inputs: Any
    key_result: str
    is_public: bool
    created_at: Optional[datetime]


class ShareResponse(BaseModel):
    share_token: str
    share_url: str


class SharedScenarioResponse(BaseModel):
    tool_id: str
    tool_name: str
    inputs: Any
    key_result: str
    created_at: Optional[datetime]


def _to_response(scenario: Scenario) -> ScenarioResponse:
    return ScenarioResponse(
        id=scenario.id,
        tool_id=scenario.tool_id,
        tool_name=scenario.tool_name,
        inputs=scenario.inputs,
        key_result=scenario.key_result or "",
        is_public=bool(scenario.is_public),
        created_at=scenario.created_at,
    )


@router.get("", response_model=List[ScenarioResponse])
def list_scenarios(
    user: AuthenticatedUser = Depends(get_current_user),
    service: ScenarioService = Depends(get_scenario_service),
):
    """The caller's saved scenarios, newest first."""
    return [_to_response(s) for s in service.list_scenarios(user)]


@router.post("", response_model=ScenarioResponse, status_code=201)
def save_scenario(
    body: SaveScenarioRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ScenarioService = Depends(get_scenario_service),
):
    scenario = service.save_scenario(
        user,
        tool_id=body.tool_id,
        tool_name=body.tool_name,
        inputs=body.inputs,
        key_result=body.key_result or "",
    )
    return _to_response(scenario)


@router.delete("")
def delete_scenario(
    id: str = Query(..., min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    service: ScenarioService = Depends(get_scenario_service),
):
    service.delete_scenario(user, id)
    return {"success": True}


@router.post("/{scenario_id}/share", response_model=ShareResponse)
def share_scenario(
    scenario_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ScenarioService = Depends(get_scenario_service),
):
    """Make an owned scenario public and return its share link."""
    scenario = service.share_scenario(user, scenario_id)
    return ShareResponse(
        share_token=scenario.share_token,
        share_url=share_url_for(scenario.share_token),
    )


@router.get("/shared/{token}", response_model=SharedScenarioResponse)
def get_shared_scenario(
    token: str,
    _rate_limit=Depends(rate_limit_dependency("shared_scenario", RATE_LIMITS["general"], by="ip")),
    service: ScenarioService = Depends(get_scenario_service),
):
    """Public read of a shared scenario. No authentication."""
    scenario = service.get_shared(token)
    return SharedScenarioResponse(
        tool_id=scenario.tool_id,
        tool_name=scenario.tool_name,
        inputs=scenario.inputs,
        key_result=scenario.key_result or "",
        created_at=scenario.created_at,
    )
