"""API key model binding a key to an actor and role."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from forj_api.db.base import Base
from forj_api.utils.clock import utcnow


class APIKey(Base):
    """API key resolved to an actor by the auth middleware."""

    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(8), nullable=False, index=True)
    digest = Column(String(64), nullable=False, index=True)  # HMAC-SHA256 of the raw key
    actor_id = Column(String(255), nullable=False, index=True)
    actor_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)  # ADMIN, OPERATOR, MODEL, CLIENT
    label = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
