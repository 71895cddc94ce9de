"""Schema bootstrap and seed data for development and testing."""

import logging

from sqlalchemy.orm import Session

import forj_api.models  # noqa: F401  (registers tables on Base.metadata)
from forj_api.auth.api_key import create_api_key
from forj_api.auth.policy import Role
from forj_api.db.base import Base
from forj_api.models import APIKey

logger = logging.getLogger(__name__)

DEMO_ACTORS = [
    ("admin_1", "Demo Admin", Role.ADMIN),
    ("operator_1", "Demo Operator", Role.OPERATOR),
    ("model_1", "Demo Model", Role.MODEL),
    ("client_1", "Demo Client", Role.CLIENT),
]


def init_db(engine) -> None:
    """Create every table. Production schemas are managed by Alembic."""
    Base.metadata.create_all(bind=engine)


def seed_api_keys(db: Session) -> list[tuple[str, str, str]]:
    """Create one key per demo actor that has none. Returns (actor_id, role, raw_key)."""
    created = []
    for actor_id, actor_name, role in DEMO_ACTORS:
        if db.query(APIKey).filter(APIKey.actor_id == actor_id).first():
            continue
        _, raw_key = create_api_key(db, actor_id, actor_name, role, label="seed")
        created.append((actor_id, role.value, raw_key))
    db.commit()
    logger.info("Seeded API keys", extra={"count": len(created)})
    return created
