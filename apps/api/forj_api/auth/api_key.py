"""API key authentication with prefix+digest lookup."""

import hashlib
import hmac
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from forj_api.auth.policy import Actor, Role
from forj_api.models import APIKey
from forj_api.settings import get_settings
from forj_api.utils.clock import utcnow

KEY_PREFIX_LENGTH = 8


def compute_key_prefix(raw_key: str) -> str:
    """Compute prefix (first 8 chars) of API key."""
    return raw_key[:KEY_PREFIX_LENGTH]


def compute_key_digest(raw_key: str, secret_key: Optional[str] = None) -> str:
    """Compute HMAC-SHA256 digest of API key."""
    secret = (secret_key or get_settings().secret_key).encode()
    return hmac.new(secret, raw_key.encode(), hashlib.sha256).hexdigest()


def generate_api_key() -> str:
    """Generate a new raw API key. Only its digest is ever stored."""
    return f"forj_{secrets.token_urlsafe(32)}"


def create_api_key(
    db: Session,
    actor_id: str,
    actor_name: str,
    role: Role,
    label: Optional[str] = None,
) -> tuple[APIKey, str]:
    """Store a new key for an actor and return it with the raw key."""
    raw_key = generate_api_key()
    api_key = APIKey(
        prefix=compute_key_prefix(raw_key),
        digest=compute_key_digest(raw_key),
        actor_id=actor_id,
        actor_name=actor_name,
        role=Role(role).value,
        label=label,
        is_active=True,
    )
    db.add(api_key)
    db.flush()
    return api_key, raw_key


def get_actor_by_api_key(db: Session, raw_key: str) -> Optional[Actor]:
    """Resolve an API key to its actor, or None if unknown or revoked."""
    if not raw_key or len(raw_key) < KEY_PREFIX_LENGTH:
        return None

    prefix = compute_key_prefix(raw_key)
    digest = compute_key_digest(raw_key)

    candidates = (
        db.query(APIKey)
        .filter(
            APIKey.prefix == prefix,
            APIKey.is_active == True,  # noqa: E712
            APIKey.revoked_at.is_(None),
        )
        .all()
    )
    for api_key in candidates:
        # Constant-time comparison of digest
        if hmac.compare_digest(api_key.digest, digest):
            api_key.last_used_at = utcnow()
            db.commit()
            return Actor(
                actor_id=api_key.actor_id,
                actor_name=api_key.actor_name,
                role=Role(api_key.role),
            )
    return None
