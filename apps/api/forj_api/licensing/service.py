"""License ledger: usage grants against certified digital twins."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from forj_api.auth.policy import SYSTEM_ACTOR, Actor
from forj_api.errors import (
    AlreadyTerminal,
    CertificateNotActive,
    InvalidRequest,
    LicenseExpired,
    LicenseNotFound,
    LicenseNotYetValid,
    LicenseRevoked,
    QuotaExceeded,
)
from forj_api.ledger.certificate import CertificateRegistry
from forj_api.ledger.service import AuditAction, AuditChain
from forj_api.models import License, LicenseStatus, UsageType
from forj_api.utils.clock import Clock, utcnow
from forj_api.utils.ids import new_id
from forj_api.utils.metrics import license_usage

logger = logging.getLogger(__name__)


def _clean_territories(territories) -> list[str]:
    # A bare string would otherwise be split into one-letter codes
    if isinstance(territories, str):
        raise InvalidRequest("Territories must be a list of codes")
    if not territories:
        raise InvalidRequest("At least one territory is required")
    cleaned = []
    for territory in territories:
        code = str(territory).strip().upper()
        if not code:
            raise InvalidRequest("Territory codes must not be empty")
        if code not in cleaned:
            cleaned.append(code)
    return cleaned


class LicenseLedger:
    """Create, consume, revoke and expire licenses."""

    def __init__(
        self,
        db: Session,
        chain: AuditChain,
        certificates: CertificateRegistry,
        clock: Clock = utcnow,
        require_active_certificate: bool = True,
    ):
        self.db = db
        self.chain = chain
        self.certificates = certificates
        self.clock = clock
        self.require_active_certificate = require_active_certificate

    def get(self, license_id: str) -> License:
        license = self.db.get(License, license_id)
        if license is None:
            raise LicenseNotFound(license_id)
        return license

    def create(
        self,
        digital_twin_id: str,
        grantee_id: str,
        usage_type: str,
        territories: list[str],
        valid_from: datetime,
        valid_until: datetime,
        actor: Actor,
        max_downloads: Optional[int] = None,
    ) -> License:
        """Grant a license. The twin must hold an ACTIVE certificate."""
        try:
            usage_type = UsageType(str(usage_type).upper())
        except ValueError:
            raise InvalidRequest(f"Unknown usage type: {usage_type}") from None
        if not grantee_id or not grantee_id.strip():
            raise InvalidRequest("A grantee is required")
        territories = _clean_territories(territories)
        if valid_from >= valid_until:
            raise InvalidRequest("valid_from must be before valid_until")
        now = self.clock()
        if valid_until <= now:
            raise InvalidRequest("valid_until must be in the future")
        if max_downloads is not None and max_downloads < 1:
            raise InvalidRequest("max_downloads must be at least 1")

        certificate = self.certificates.active_for_twin(digital_twin_id)
        if certificate is None:
            raise CertificateNotActive(
                f"Digital twin {digital_twin_id} has no active certificate",
                digital_twin_id=digital_twin_id,
            )

        license = License(
            id=new_id("lic"),
            digital_twin_id=digital_twin_id,
            certificate_id=certificate.id,
            grantee_id=grantee_id.strip(),
            usage_type=usage_type.value,
            territories=territories,
            valid_from=valid_from,
            valid_until=valid_until,
            status=LicenseStatus.ACTIVE.value,
            max_downloads=max_downloads,
            current_downloads=0,
            created_by=actor.actor_id,
            created_at=now,
        )
        self.db.add(license)
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.LICENSE_CREATED,
            entity_id=certificate.entity_id,
            metadata={
                "license_id": license.id,
                "digital_twin_id": digital_twin_id,
                "grantee_id": license.grantee_id,
                "usage_type": license.usage_type,
                "territories": territories,
                "valid_until": valid_until,
                "max_downloads": max_downloads,
            },
        )
        logger.info(
            "License created",
            extra={"license_id": license.id, "digital_twin_id": digital_twin_id, "actor_id": actor.actor_id},
        )
        return license

    def check_usable(self, license: License) -> None:
        """Raise the error that blocks usage of ``license`` right now, if any."""
        status = license.effective_status(self.clock())
        if status is LicenseStatus.REVOKED:
            raise LicenseRevoked(license.id)
        if status is LicenseStatus.EXPIRED:
            raise LicenseExpired(license.id)
        if status is LicenseStatus.PENDING:
            raise LicenseNotYetValid(license.id)
        if license.max_downloads is not None and license.current_downloads >= license.max_downloads:
            raise QuotaExceeded(license.id, license.max_downloads)
        if self.require_active_certificate and self.certificates.active_for_twin(license.digital_twin_id) is None:
            raise CertificateNotActive(
                f"Certificate for {license.digital_twin_id} is no longer active",
                license_id=license.id,
            )

    def record_usage(self, license: License, actor: Actor) -> License:
        """Consume one download. Expiry is evaluated against the clock, not the stored status."""
        try:
            self.check_usable(license)
        except (LicenseRevoked, LicenseExpired, LicenseNotYetValid, QuotaExceeded, CertificateNotActive) as e:
            license_usage.labels(outcome=e.code).inc()
            logger.warning(
                "License usage rejected",
                extra={"license_id": license.id, "actor_id": actor.actor_id, "error": e.code},
            )
            raise

        license.current_downloads = license.current_downloads + 1
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.LICENSE_USED,
            entity_id=self._forge_id(license),
            metadata={
                "license_id": license.id,
                "current_downloads": license.current_downloads,
                "max_downloads": license.max_downloads,
            },
        )
        license_usage.labels(outcome="accepted").inc()
        return license

    def revoke(self, license: License, reason: str, actor: Actor) -> License:
        """One-way ACTIVE -> REVOKED, effective immediately."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequest("A revocation reason is required")

        status = license.effective_status(self.clock())
        if status not in (LicenseStatus.ACTIVE, LicenseStatus.PENDING):
            raise AlreadyTerminal(license.id, status.value)

        license.status = LicenseStatus.REVOKED.value
        license.revoked_at = self.clock()
        license.revoked_by = actor.actor_id
        license.revoked_reason = reason
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.LICENSE_REVOKED,
            entity_id=self._forge_id(license),
            metadata={"license_id": license.id, "reason": reason},
        )
        logger.info("License revoked", extra={"license_id": license.id, "actor_id": actor.actor_id})
        return license

    def _forge_id(self, license: License) -> str:
        return self.certificates.get(license.certificate_id).entity_id

    def list_active(self, digital_twin_id: str) -> list[License]:
        """Licenses for a twin whose effective status is ACTIVE."""
        now = self.clock()
        licenses = (
            self.db.query(License)
            .filter(
                License.digital_twin_id == digital_twin_id,
                License.status == LicenseStatus.ACTIVE.value,
            )
            .order_by(License.created_at.desc())
            .all()
        )
        return [lic for lic in licenses if lic.effective_status(now) is LicenseStatus.ACTIVE]

    def list_by_grantee(self, grantee_id: str) -> list[License]:
        return (
            self.db.query(License)
            .filter(License.grantee_id == grantee_id)
            .order_by(License.created_at.desc())
            .all()
        )

    def list_licenses(self) -> list[License]:
        return self.db.query(License).order_by(License.created_at.desc()).all()

    def expire_due(self) -> list[License]:
        """Persist EXPIRED for ACTIVE licenses past ``valid_until``."""
        now = self.clock()
        due = (
            self.db.query(License)
            .filter(
                License.status == LicenseStatus.ACTIVE.value,
                License.valid_until < now,
            )
            .all()
        )
        for license in due:
            license.status = LicenseStatus.EXPIRED.value
            self.db.flush()
            self.chain.append(
                SYSTEM_ACTOR.actor_id,
                SYSTEM_ACTOR.actor_name,
                AuditAction.LICENSE_EXPIRED,
                entity_id=self._forge_id(license),
                metadata={"license_id": license.id, "valid_until": license.valid_until},
            )
        if due:
            logger.info("Licenses expired", extra={"count": len(due)})
        return due
