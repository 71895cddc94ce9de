"""Certificate routes, including the public verification lookup."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from forj_api.auth.policy import Actor
from forj_api.core import ForjCore, get_core
from forj_api.errors import CertificateNotFound
from forj_api.models import Certificate
from forj_api.routes.deps import get_actor

router = APIRouter(prefix="/v1", tags=["certificates"])


class RevokeRequest(BaseModel):
    """Revocation request."""

    reason: str


def _to_response(core: ForjCore, certificate: Certificate) -> dict:
    view = core.certificate_view(certificate)
    view["entity_id"] = certificate.entity_id
    view["issued_by"] = certificate.issued_by
    return view


@router.post("/forges/{forge_id}/certificate", status_code=status.HTTP_201_CREATED)
def issue_certificate(
    forge_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Issue a certificate for a certified forge. Repeated calls return the same one."""
    return _to_response(core, core.issue_certificate(forge_id, actor))


@router.get("/certificates")
def list_certificates(
    entity_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return [
        _to_response(core, certificate)
        for certificate in core.list_certificates(actor, entity_id=entity_id, status=status)
    ]


@router.get("/certificates/{certificate_id}")
def get_certificate(
    certificate_id: str,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    """Get certificate with verification metadata."""
    return _to_response(core, core.get_certificate(certificate_id, actor))


@router.post("/certificates/{certificate_id}/revoke")
def revoke_certificate(
    certificate_id: str,
    request: RevokeRequest,
    actor: Actor = Depends(get_actor),
    core: ForjCore = Depends(get_core),
):
    return _to_response(core, core.revoke_certificate(certificate_id, request.reason, actor))


@router.get("/verify/{code}")
def verify_certificate(code: str, core: ForjCore = Depends(get_core)):
    """Public lookup by verification code; case and separators are ignored."""
    certificate = core.verify_certificate(code)
    if certificate is None:
        raise CertificateNotFound(code)
    return core.certificate_view(certificate)
