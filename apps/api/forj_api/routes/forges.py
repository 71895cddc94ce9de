"""Forge pipeline routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel

from forj_api.auth.policy import Actor, forge_actions
from forj_api.core import ForjCore, get_core
from forj_api.models import Forge
from forj_api.pipeline.states import FORGE_STATES
from forj_api.routes.deps import get_actor

router = APIRouter(prefix="/v1", tags=["forges"])


class ForgeCreate(BaseModel):
    """Forge creation request."""

    owner_id: str


class TransitionRequest(BaseModel):
    """Target state for a forward transition or explicit rollback."""

    target_state: str


class ForgeResponse(BaseModel):
    """Forge response."""

    id: str
    owner_id: str
    current_state: str
    version: int
    seed_hash: Optional[str] = None
    digital_twin_id: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    certified_at: Optional[datetime] = None
    actions: Optional[dict] = None

    class Config:
        from_attributes = True


def _to_response(forge: Forge, actor: Actor) -> ForgeResponse:
    response = ForgeResponse.model_validate(forge)
    response.actions = forge_actions(actor.role, forge.state)
    return response


@router.get("/forges/states")
def list_states():
    """Pipeline states in order."""
    return [
        {"name": state.value, "label": state.label, "position": state.position, "description": state.description}
        for state in FORGE_STATES
    ]


@router.post("/forges", response_model=ForgeResponse, status_code=status.HTTP_201_CREATED)
def create_forge(
    request: ForgeCreate,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Create a forge in the initial state."""
    return _to_response(core.create_entity(request.owner_id, actor), actor)


@router.get("/forges", response_model=list[ForgeResponse])
def list_forges(
    owner_id: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """List forges visible to the caller, newest first."""
    return [_to_response(forge, actor) for forge in core.list_entities(actor, owner_id=owner_id, state=state)]


@router.get("/forges/{forge_id}", response_model=ForgeResponse)
def get_forge(
    forge_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return _to_response(core.get_entity(forge_id, actor), actor)


@router.post("/forges/{forge_id}/transition", response_model=ForgeResponse)
def transition_forge(
    forge_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Advance one step, or roll back to any earlier state."""
    return _to_response(core.transition_entity(forge_id, request.target_state, actor), actor)


@router.post("/forges/{forge_id}/rollback", response_model=ForgeResponse)
def rollback_forge(
    forge_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Return to the previous state."""
    return _to_response(core.rollback_entity(forge_id, actor), actor)


@router.delete("/forges/{forge_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_forge(
    forge_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    core.delete_entity(forge_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
