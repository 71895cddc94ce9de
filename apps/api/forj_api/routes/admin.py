"""Admin routes for API key management."""

import hmac
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from forj_api.auth.api_key import create_api_key
from forj_api.auth.policy import Role
from forj_api.db.session import get_db
from forj_api.errors import AuthenticationRequired, InvalidRequest, NotFound
from forj_api.models import APIKey
from forj_api.settings import get_settings
from forj_api.utils.clock import utcnow

router = APIRouter(prefix="/admin", tags=["admin"])


class APIKeyCreate(BaseModel):
    """API key creation request."""

    actor_id: str
    actor_name: str
    role: str
    label: Optional[str] = None


class APIKeyResponse(BaseModel):
    """API key response. ``api_key`` is only present right after creation."""

    id: int
    prefix: str
    actor_id: str
    actor_name: str
    role: str
    label: Optional[str] = None
    created_at: datetime
    revoked_at: Optional[datetime] = None
    is_active: bool
    api_key: Optional[str] = None

    class Config:
        from_attributes = True


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    """Bootstrap credential for key management: the configured secret key."""
    expected = get_settings().secret_key
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise AuthenticationRequired("Missing or invalid x-admin-token header.")


@router.post(
    "/api-keys",
    response_model=APIKeyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_token)],
)
def create_key(request: APIKeyCreate, db: Session = Depends(get_db)):
    """Create an API key bound to an actor and role."""
    try:
        role = Role(request.role.upper())
    except ValueError:
        raise InvalidRequest(f"Unknown role: {request.role}") from None

    api_key, raw_key = create_api_key(db, request.actor_id, request.actor_name, role, request.label)
    db.commit()

    response = APIKeyResponse.model_validate(api_key)
    response.api_key = raw_key
    return response


@router.post(
    "/api-keys/{key_id}/revoke",
    response_model=APIKeyResponse,
    dependencies=[Depends(require_admin_token)],
)
def revoke_key(key_id: int, db: Session = Depends(get_db)):
    api_key = db.query(APIKey).filter(APIKey.id == key_id).first()
    if api_key is None:
        raise NotFound(f"API key {key_id} not found")

    api_key.is_active = False
    api_key.revoked_at = utcnow()
    db.commit()
    return api_key
