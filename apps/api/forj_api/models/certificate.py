"""Certificate models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from forj_api.db.base import Base


class CertificateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class Certificate(Base):
    """Revocable, publicly verifiable credential bound to a certified forge."""

    __tablename__ = "certificates"

    id = Column(String(64), primary_key=True)
    entity_id = Column(String(64), ForeignKey("forges.id"), nullable=False, index=True)
    digital_twin_id = Column(String(64), nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False, index=True)
    issued_by = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=CertificateStatus.ACTIVE.value)
    verification_code = Column(String(19), nullable=False, unique=True)  # XXXX-XXXX-XXXX-XXXX
    lookup_key = Column(String(16), nullable=False, unique=True, index=True)  # normalized code
    expires_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(255), nullable=True)
    revoked_reason = Column(Text, nullable=True)
    signature = Column(Text, nullable=False)
    key_id = Column(String(255), nullable=False)
    alg = Column(String(20), default="PS256", nullable=False)
    version = Column(Integer, nullable=False)

    forge = relationship("Forge")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # at most one ACTIVE certificate per forge
        Index(
            "uq_certificates_active_entity",
            "entity_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    def effective_status(self, now: datetime) -> CertificateStatus:
        """Stored status with time-based expiry applied lazily."""
        status = CertificateStatus(self.status)
        if status is CertificateStatus.ACTIVE and self.expires_at is not None and now >= self.expires_at:
            return CertificateStatus.EXPIRED
        return status

    def is_active(self, now: datetime) -> bool:
        return self.effective_status(now) is CertificateStatus.ACTIVE

    def signed_payload(self) -> dict:
        """Fields covered by the certificate signature."""
        return {
            "certificate_id": self.id,
            "entity_id": self.entity_id,
            "digital_twin_id": self.digital_twin_id,
            "verification_code": self.verification_code,
            "issued_at": _iso(self.issued_at),
            "issued_by": self.issued_by,
            "expires_at": _iso(self.expires_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
