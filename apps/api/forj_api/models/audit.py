"""Audit chain models."""

from sqlalchemy import Column, DateTime, Integer, JSON, String

from forj_api.db.base import Base
from forj_api.utils.clock import utcnow


class AuditEntry(Base):
    """Append-only audit entry, hash-linked to its predecessor."""

    __tablename__ = "audit_entries"

    id = Column(String(64), primary_key=True)
    sequence = Column(Integer, nullable=False, unique=True, index=True)  # 0-based insertion order
    actor_id = Column(String(255), nullable=False, index=True)
    actor_name = Column(String(255), nullable=False)
    action = Column(String(64), nullable=False, index=True)
    entity_id = Column(String(64), nullable=True, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    integrity_hash = Column(String(64), nullable=False, unique=True)
    previous_hash = Column(String(64), nullable=False, default="")  # "" for the first entry


class AuditChainHead(Base):
    """Single-row chain pointer: hash and length of the last committed entry."""

    __tablename__ = "audit_chain_head"

    id = Column(Integer, primary_key=True)
    last_hash = Column(String(64), nullable=False, default="")
    length = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
