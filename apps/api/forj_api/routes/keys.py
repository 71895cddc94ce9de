"""Public key endpoint for certificate signature verification."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from forj_api.core import ForjCore, get_core

router = APIRouter(prefix="/v1", tags=["keys"])


@router.get("/keys/jwks.json")
def get_jwks(core: ForjCore = Depends(get_core)):
    """Return JSON Web Key Set for certificate verification."""
    return JSONResponse(content=core.jwks())
