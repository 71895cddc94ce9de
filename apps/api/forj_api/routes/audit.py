"""Audit chain routes."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from forj_api.auth.policy import Actor
from forj_api.core import ForjCore, get_core
from forj_api.routes.deps import get_actor
from forj_api.utils.clock import as_naive_utc

router = APIRouter(prefix="/v1", tags=["audit"])


class AuditEventCreate(BaseModel):
    """Externally reported audit event."""

    action: str
    entity_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditEntryResponse(BaseModel):
    """Audit entry response."""

    id: str
    sequence: int
    actor_id: str
    actor_name: str
    action: str
    entity_id: Optional[str] = None
    timestamp: datetime
    metadata: dict[str, Any] = Field(validation_alias="metadata_json")
    integrity_hash: str
    previous_hash: str

    class Config:
        from_attributes = True


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_events(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Audit entries newest first."""
    return core.list_audit_events(
        actor,
        actor_id=actor_id,
        action=action,
        entity_id=entity_id,
        since=as_naive_utc(since),
        until=as_naive_utc(until),
        limit=limit,
        offset=offset,
    )


@router.post("/audit", response_model=AuditEntryResponse, status_code=status.HTTP_201_CREATED)
def append_audit_event(
    request: AuditEventCreate,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return core.append_audit_event(actor, request.action, entity_id=request.entity_id, metadata=request.metadata)


@router.get("/audit/verify")
def verify_audit_chain(
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Replay the whole chain. A broken chain is a 200 with ``valid: false``."""
    return core.verify_audit_integrity(actor).to_dict()
