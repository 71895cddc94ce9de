"""Forge pipeline models."""

from sqlalchemy import Column, DateTime, Integer, String

from forj_api.db.base import Base
from forj_api.pipeline.states import ForgeState
from forj_api.utils.clock import utcnow


class Forge(Base):
    """An entity progressing through the certification pipeline."""

    __tablename__ = "forges"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    current_state = Column(String(32), nullable=False, default=ForgeState.CREATED.value, index=True)
    version = Column(Integer, nullable=False)
    seed_hash = Column(String(80), nullable=True)  # set once on entering SEEDED
    digital_twin_id = Column(String(64), nullable=True, unique=True, index=True)  # set iff CERTIFIED
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    certified_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)  # soft delete, never for certified forges

    __mapper_args__ = {"version_id_col": version}

    @property
    def state(self) -> ForgeState:
        return ForgeState(self.current_state)

    @property
    def is_certified(self) -> bool:
        return self.current_state == ForgeState.CERTIFIED.value
