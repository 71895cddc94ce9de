"""License routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from forj_api.auth.policy import Actor, Role
from forj_api.core import ForjCore, get_core
from forj_api.errors import InvalidRequest
from forj_api.models import License
from forj_api.routes.deps import get_actor
from forj_api.utils.clock import as_naive_utc

router = APIRouter(prefix="/v1", tags=["licenses"])


class LicenseCreate(BaseModel):
    """License creation request. ``valid_from`` defaults to now."""

    digital_twin_id: str
    grantee_id: str
    usage_type: str
    territories: list[str]
    valid_from: Optional[datetime] = None
    valid_until: datetime
    max_downloads: Optional[int] = None


class RevokeRequest(BaseModel):
    """Revocation request."""

    reason: str


class LicenseResponse(BaseModel):
    """License response with its effective status."""

    id: str
    digital_twin_id: str
    certificate_id: str
    grantee_id: str
    usage_type: str
    territories: list[str]
    valid_from: datetime
    valid_until: datetime
    status: str
    max_downloads: Optional[int] = None
    current_downloads: int
    remaining_downloads: Optional[int] = None
    created_by: str
    created_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None

    class Config:
        from_attributes = True


def _to_response(core: ForjCore, license: License) -> LicenseResponse:
    response = LicenseResponse.model_validate(license)
    response.status = core.license_status(license).value
    return response


@router.post("/licenses", response_model=LicenseResponse, status_code=status.HTTP_201_CREATED)
def create_license(
    request: LicenseCreate,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    license = core.create_license(
        actor,
        digital_twin_id=request.digital_twin_id,
        grantee_id=request.grantee_id,
        usage_type=request.usage_type,
        territories=request.territories,
        valid_from=as_naive_utc(request.valid_from) or core.clock(),
        valid_until=as_naive_utc(request.valid_until),
        max_downloads=request.max_downloads,
    )
    return _to_response(core, license)


@router.get("/licenses", response_model=list[LicenseResponse])
def list_licenses(
    digital_twin_id: Optional[str] = Query(None),
    grantee_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Active licenses of a digital twin, or every license of a grantee."""
    if digital_twin_id:
        licenses = core.list_active_licenses(digital_twin_id, actor)
    elif grantee_id or actor.role is Role.CLIENT:
        licenses = core.list_licenses_by_grantee(grantee_id or actor.actor_id, actor)
    else:
        raise InvalidRequest("Provide digital_twin_id or grantee_id")
    return [_to_response(core, license) for license in licenses]


@router.get("/licenses/{license_id}", response_model=LicenseResponse)
def get_license(
    license_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return _to_response(core, core.get_license(license_id, actor))


@router.post("/licenses/{license_id}/usage", response_model=LicenseResponse)
def record_license_usage(
    license_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Consume one download against the license quota."""
    return _to_response(core, core.record_license_usage(license_id, actor))


@router.post("/licenses/{license_id}/revoke", response_model=LicenseResponse)
def revoke_license(
    license_id: str,
    request: RevokeRequest,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return _to_response(core, core.revoke_license(license_id, request.reason, actor))
