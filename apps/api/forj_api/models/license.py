"""License models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String, Text

from forj_api.db.base import Base


class LicenseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    # Derived only, never stored: ACTIVE but before valid_from.
    PENDING = "PENDING"


class UsageType(str, Enum):
    COMMERCIAL = "COMMERCIAL"
    EDITORIAL = "EDITORIAL"


class License(Base):
    """Time-boxed, quota-limited usage grant against a certified forge."""

    __tablename__ = "licenses"

    id = Column(String(64), primary_key=True)
    digital_twin_id = Column(String(64), nullable=False, index=True)
    certificate_id = Column(String(64), ForeignKey("certificates.id"), nullable=False, index=True)
    grantee_id = Column(String(255), nullable=False, index=True)
    usage_type = Column(String(32), nullable=False)
    territories = Column(JSON, nullable=False)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False, index=True)
    status = Column(String(16), nullable=False, default=LicenseStatus.ACTIVE.value, index=True)
    max_downloads = Column(Integer, nullable=True)  # NULL: unlimited
    current_downloads = Column(Integer, nullable=False, default=0)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(255), nullable=True)
    revoked_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint(
            "max_downloads IS NULL OR current_downloads <= max_downloads",
            name="ck_licenses_download_quota",
        ),
        CheckConstraint("valid_from < valid_until", name="ck_licenses_validity_window"),
    )

    def effective_status(self, now: datetime) -> LicenseStatus:
        """Stored status with the validity window applied lazily."""
        status = LicenseStatus(self.status)
        if status is not LicenseStatus.ACTIVE:
            return status
        if now > self.valid_until:
            return LicenseStatus.EXPIRED
        if now < self.valid_from:
            return LicenseStatus.PENDING
        return LicenseStatus.ACTIVE

    @property
    def remaining_downloads(self):
        if self.max_downloads is None:
            return None
        return self.max_downloads - self.current_downloads
