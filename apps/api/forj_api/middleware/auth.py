"""Authentication middleware resolving the API key to an actor."""

import logging

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from forj_api.auth.api_key import get_actor_by_api_key
from forj_api.db.session import get_session_factory

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/health", "/ready", "/metrics", "/docs", "/redoc", "/openapi.json"})
PUBLIC_PREFIXES = ("/admin", "/metrics", "/v1/verify/", "/v1/keys/")


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


class AuthMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.actor`` from the ``x-api-key`` header."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        api_key = request.headers.get("x-api-key")
        if not api_key:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Missing API key. Provide x-api-key header.", "code": "authentication_required"},
            )

        session_factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
        db = session_factory()
        try:
            actor = get_actor_by_api_key(db, api_key)
        finally:
            db.close()

        if actor is None:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or revoked API key.", "code": "authentication_required"},
            )

        request.state.actor = actor
        logger.info(
            "Authenticated request",
            extra={
                "actor_id": actor.actor_id,
                "role": actor.role.value,
                "correlation_id": getattr(request.state, "correlation_id", None),
                "path": request.url.path,
            },
        )
        return await call_next(request)
