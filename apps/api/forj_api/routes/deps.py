"""Shared route dependencies."""

from fastapi import Request

from forj_api.auth.policy import Actor
from forj_api.errors import AuthenticationRequired


def get_actor(request: Request) -> Actor:
    """Actor attached by ``AuthMiddleware``."""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise AuthenticationRequired("Missing API key. Provide x-api-key header.")
    return actor
