"""Database models - import all models here for Alembic discovery."""

from forj_api.models.actor import APIKey
from forj_api.models.audit import AuditChainHead, AuditEntry
from forj_api.models.certificate import Certificate, CertificateStatus
from forj_api.models.forge import Forge
from forj_api.models.license import License, LicenseStatus, UsageType

__all__ = [
    "APIKey",
    "AuditEntry",
    "AuditChainHead",
    "Forge",
    "Certificate",
    "CertificateStatus",
    "License",
    "LicenseStatus",
    "UsageType",
]
