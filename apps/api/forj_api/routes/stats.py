"""Dashboard statistics."""

from fastapi import APIRouter, Depends

from forj_api.auth.policy import Actor
from forj_api.core import ForjCore, get_core
from forj_api.routes.deps import get_actor

router = APIRouter(prefix="/v1", tags=["stats"])


@router.get("/stats")
def get_stats(actor: Actor = Depends(get_actor), core: ForjCore = Depends(get_core)):
    """Forges by state, certificates and licenses by effective status."""
    return core.stats(actor)
