"""Certificate issuance, verification and revocation."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from forj_api.auth.policy import SYSTEM_ACTOR, Actor
from forj_api.errors import AlreadyRevoked, CertificateNotFound, InvalidRequest, NotCertified
from forj_api.ledger.codes import generate_code, normalize_code
from forj_api.ledger.service import AuditAction, AuditChain
from forj_api.ledger.signer import Signer
from forj_api.models import Certificate, CertificateStatus, Forge
from forj_api.utils.clock import Clock, utcnow
from forj_api.utils.ids import new_id
from forj_api.utils.metrics import certificate_events

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class CertificateRegistry:
    """Bind certified forges to signed, revocable credentials."""

    def __init__(
        self,
        db: Session,
        chain: AuditChain,
        signer: Signer,
        clock: Clock = utcnow,
        validity_days: Optional[int] = None,
    ):
        self.db = db
        self.chain = chain
        self.signer = signer
        self.clock = clock
        self.validity_days = validity_days

    def get(self, certificate_id: str) -> Certificate:
        certificate = self.db.get(Certificate, certificate_id)
        if certificate is None:
            raise CertificateNotFound(certificate_id)
        return certificate

    def stored_active_for_entity(self, entity_id: str) -> Optional[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(
                Certificate.entity_id == entity_id,
                Certificate.status == CertificateStatus.ACTIVE.value,
            )
            .first()
        )

    def active_for_twin(self, digital_twin_id: str) -> Optional[Certificate]:
        """The currently trusted certificate for a digital twin, if any."""
        certificate = (
            self.db.query(Certificate)
            .filter(
                Certificate.digital_twin_id == digital_twin_id,
                Certificate.status == CertificateStatus.ACTIVE.value,
            )
            .first()
        )
        if certificate is not None and certificate.is_active(self.clock()):
            return certificate
        return None

    def issue(self, forge: Forge, actor: Actor) -> Certificate:
        """Issue a certificate for a certified forge.

        Idempotent: while the forge holds an ACTIVE certificate, that
        certificate is returned and nothing is written.
        """
        if not forge.is_certified or not forge.digital_twin_id:
            raise NotCertified(forge.id, forge.current_state)

        now = self.clock()
        existing = self.stored_active_for_entity(forge.id)
        if existing is not None:
            if existing.is_active(now):
                return existing
            self._expire(existing)

        certificate = Certificate(
            id=new_id("cert"),
            entity_id=forge.id,
            digital_twin_id=forge.digital_twin_id,
            issued_at=now,
            issued_by=actor.actor_id,
            status=CertificateStatus.ACTIVE.value,
            expires_at=now + timedelta(days=self.validity_days) if self.validity_days else None,
            key_id=self.signer.get_key_id(),
            alg=self.signer.algorithm,
        )
        certificate.verification_code = self._unique_code()
        certificate.lookup_key = normalize_code(certificate.verification_code)
        certificate.signature = self.signer.sign_payload(certificate.signed_payload())

        self.db.add(certificate)
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.CERTIFICATE_ISSUED,
            entity_id=forge.id,
            metadata={
                "certificate_id": certificate.id,
                "digital_twin_id": certificate.digital_twin_id,
                "verification_code": certificate.verification_code,
            },
        )
        certificate_events.labels(event="issued").inc()
        logger.info(
            "Certificate issued",
            extra={"certificate_id": certificate.id, "forge_id": forge.id, "actor_id": actor.actor_id},
        )
        return certificate

    def _unique_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_code()
            taken = (
                self.db.query(Certificate.id)
                .filter(Certificate.lookup_key == normalize_code(code))
                .first()
            )
            if taken is None:
                return code
        raise RuntimeError("Could not allocate a unique verification code")

    def verify(self, code: str) -> Optional[Certificate]:
        """Look up a certificate by its verification code.

        Malformed and unknown codes are indistinguishable: both return None.
        """
        lookup_key = normalize_code(code)
        if lookup_key is None:
            return None
        return self.db.query(Certificate).filter(Certificate.lookup_key == lookup_key).first()

    def revoke(self, certificate_id: str, reason: str, actor: Actor) -> Certificate:
        """One-way ACTIVE -> REVOKED. The forge itself stays CERTIFIED."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequest("A revocation reason is required")

        certificate = self.get(certificate_id)
        now = self.clock()
        status = certificate.effective_status(now)
        if status is not CertificateStatus.ACTIVE:
            raise AlreadyRevoked(certificate.id, status.value)

        certificate.status = CertificateStatus.REVOKED.value
        certificate.revoked_at = now
        certificate.revoked_by = actor.actor_id
        certificate.revoked_reason = reason
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.CERTIFICATE_REVOKED,
            entity_id=certificate.entity_id,
            metadata={"certificate_id": certificate.id, "reason": reason},
        )
        certificate_events.labels(event="revoked").inc()
        logger.info(
            "Certificate revoked",
            extra={"certificate_id": certificate.id, "actor_id": actor.actor_id},
        )
        return certificate

    def list_certificates(
        self,
        entity_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Certificate]:
        """Certificates newest first; ``status`` filters on effective status."""
        query = self.db.query(Certificate)
        if entity_id:
            query = query.filter(Certificate.entity_id == entity_id)
        certificates = query.order_by(Certificate.issued_at.desc()).all()
        if status:
            now = self.clock()
            certificates = [c for c in certificates if c.effective_status(now).value == status]
        return certificates

    def expire_due(self) -> list[Certificate]:
        """Persist EXPIRED for ACTIVE certificates past their expiry."""
        now = self.clock()
        due = (
            self.db.query(Certificate)
            .filter(
                Certificate.status == CertificateStatus.ACTIVE.value,
                Certificate.expires_at.isnot(None),
                Certificate.expires_at <= now,
            )
            .all()
        )
        for certificate in due:
            self._expire(certificate)
        return due

    def _expire(self, certificate: Certificate) -> None:
        certificate.status = CertificateStatus.EXPIRED.value
        self.db.flush()
        self.chain.append(
            SYSTEM_ACTOR.actor_id,
            SYSTEM_ACTOR.actor_name,
            AuditAction.CERTIFICATE_EXPIRED,
            entity_id=certificate.entity_id,
            metadata={"certificate_id": certificate.id},
        )
        certificate_events.labels(event="expired").inc()

    def public_view(self, certificate: Certificate) -> dict:
        return public_view(certificate, self.clock())


def public_view(certificate: Certificate, now) -> dict:
    """Projection returned by public verification."""
    status = certificate.effective_status(now)
    view = {
        "certificate_id": certificate.id,
        "digital_twin_id": certificate.digital_twin_id,
        "verification_code": certificate.verification_code,
        "status": status.value,
        "issued_at": certificate.issued_at.isoformat(),
        "expires_at": certificate.expires_at.isoformat() if certificate.expires_at else None,
        "signature": certificate.signature,
        "signed_payload": certificate.signed_payload(),
        "key_id": certificate.key_id,
        "alg": certificate.alg,
        "verification": {
            "jwks_url": "/v1/keys/jwks.json",
            "instructions": "Verify signature over the canonical signed_payload using the JWKS key",
        },
    }
    if status is CertificateStatus.REVOKED:
        view["revoked_at"] = certificate.revoked_at.isoformat()
        view["revoked_reason"] = certificate.revoked_reason
    return view
