"""Service boundary for the forge pipeline, audit chain, certificates and licenses.

Every mutation runs as one unit of work: load the row, enforce the terminal
lock, check the access policy, apply the change together with its audit
entry, commit. Any error rolls the whole unit back, so there is never a
state change without its audit entry or an audit entry without its change.
"""

import logging
import threading
from collections import Counter, namedtuple
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from forj_api.auth import policy
from forj_api.auth.policy import SYSTEM_ACTOR, Actor, Role
from forj_api.db.session import get_session_factory
from forj_api.errors import (
    AlreadyCertified,
    ConcurrencyConflict,
    EntityNotFound,
    InvalidRequest,
    LicenseNotFound,
)
from forj_api.ledger.certificate import CertificateRegistry, public_view
from forj_api.ledger.service import AuditChain, ChainVerification, validate_external_action
from forj_api.ledger.signer import Signer, get_signer
from forj_api.licensing.service import LicenseLedger
from forj_api.models import AuditEntry, Certificate, CertificateStatus, Forge, License, LicenseStatus
from forj_api.pipeline.state_machine import ForgeStateMachine
from forj_api.pipeline.states import ForgeState, parse_state
from forj_api.settings import Settings, get_settings
from forj_api.utils.clock import Clock, utcnow
from forj_api.utils.metrics import expiry_sweeps

logger = logging.getLogger(__name__)

# One writer at a time per process. Every mutation appends to the global
# chain, so this also serializes per-forge transitions and per-license usage.
_WRITE_LOCK = threading.Lock()

Services = namedtuple("Services", ["db", "chain", "forges", "certificates", "licenses"])


def _state(value) -> ForgeState:
    try:
        return parse_state(value)
    except ValueError as e:
        raise InvalidRequest(str(e)) from None


class ForjCore:
    """Facade over the domain services, one database transaction per call.

    ``session_factory`` must produce sessions with ``expire_on_commit=False``
    so returned rows stay readable after the unit of work closes.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        signer: Optional[Signer] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock
        self._signer = signer

    @property
    def signer(self) -> Signer:
        if self._signer is None:
            self._signer = get_signer(self.settings)
        return self._signer

    # Units of work

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _services(self, db) -> Services:
        chain = AuditChain(db, clock=self.clock)
        certificates = CertificateRegistry(
            db,
            chain,
            self.signer,
            clock=self.clock,
            validity_days=self.settings.certificate_validity_days,
        )
        return Services(
            db=db,
            chain=chain,
            forges=ForgeStateMachine(db, chain, clock=self.clock),
            certificates=certificates,
            licenses=LicenseLedger(
                db,
                chain,
                certificates,
                clock=self.clock,
                require_active_certificate=self.settings.license_requires_active_certificate,
            ),
        )

    def _mutate(self, operation: Callable[[Services], object]):
        """Run ``operation`` as one committed transaction, retrying once on a version conflict."""
        for attempt in (1, 2):
            with _WRITE_LOCK, self._session() as db:
                try:
                    result = operation(self._services(db))
                    db.commit()
                    return result
                except StaleDataError as e:
                    db.rollback()
                    if attempt == 2:
                        raise ConcurrencyConflict(
                            "Record was modified concurrently, retry the request"
                        ) from e
                    logger.warning("Version conflict, retrying once", extra={"error": str(e)})
                except Exception:
                    db.rollback()
                    raise

    def _read(self, operation: Callable[[Services], object]):
        with self._session() as db:
            return operation(self._services(db))

    # Forges

    def create_entity(self, owner_id: str, actor: Actor) -> Forge:
        if not owner_id or not owner_id.strip():
            raise InvalidRequest("An owner is required")

        def op(s: Services):
            policy.require(actor, "forges:create")
            return s.forges.create(owner_id.strip(), actor)

        return self._mutate(op)

    def get_entity(self, entity_id: str, actor: Actor) -> Forge:
        def op(s: Services):
            policy.require(actor, "forges:read")
            return self._visible_forge(s, entity_id, actor)

        return self._read(op)

    def list_entities(
        self,
        actor: Actor,
        owner_id: Optional[str] = None,
        state: Optional[str] = None,
    ) -> list[Forge]:
        if state is not None:
            state = _state(state).value
        if actor.role is Role.MODEL:
            owner_id = actor.actor_id

        def op(s: Services):
            policy.require(actor, "forges:read")
            return s.forges.list_forges(owner_id=owner_id, state=state)

        return self._read(op)

    def transition_entity(self, entity_id: str, target_state, actor: Actor) -> Forge:
        target = _state(target_state)

        def op(s: Services):
            forge = s.forges.get(entity_id)
            if forge.is_certified:
                raise AlreadyCertified(forge.id)
            policy.require(actor, "forges:transition", state=forge.state, target=target)
            s.forges.apply(forge, target, actor)
            if target.is_terminal and self.settings.auto_issue_certificate:
                s.certificates.issue(forge, actor)
            return forge

        return self._mutate(op)

    def rollback_entity(self, entity_id: str, actor: Actor) -> Forge:
        def op(s: Services):
            forge = s.forges.get(entity_id)
            if forge.is_certified:
                raise AlreadyCertified(forge.id)
            policy.require(actor, "forges:rollback", state=forge.state)
            return s.forges.apply(forge, s.forges.rollback_target(forge), actor)

        return self._mutate(op)

    def delete_entity(self, entity_id: str, actor: Actor) -> Forge:
        def op(s: Services):
            forge = s.forges.get(entity_id)
            if forge.is_certified:
                raise AlreadyCertified(forge.id)
            policy.require(actor, "forges:delete", state=forge.state)
            return s.forges.delete(forge, actor)

        return self._mutate(op)

    def _visible_forge(self, s: Services, entity_id: str, actor: Actor) -> Forge:
        forge = s.forges.get(entity_id)
        if actor.role is Role.MODEL and forge.owner_id != actor.actor_id:
            raise EntityNotFound(entity_id)
        return forge

    # Audit

    def append_audit_event(
        self,
        actor: Actor,
        action: str,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AuditEntry:
        """Record an externally reported event. Core-owned action names are refused."""
        action = validate_external_action(action)

        def op(s: Services):
            policy.require(actor, "audit:write")
            return s.chain.append(actor.actor_id, actor.actor_name, action, entity_id=entity_id, metadata=metadata)

        return self._mutate(op)

    def list_audit_events(
        self,
        actor: Actor,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditEntry]:
        def op(s: Services):
            policy.require(actor, "audit:read")
            return s.chain.list_entries(
                actor_id=actor_id,
                action=action,
                entity_id=entity_id,
                since=since,
                until=until,
                limit=limit,
                offset=offset,
            )

        return self._read(op)

    def verify_audit_integrity(self, actor: Actor = SYSTEM_ACTOR) -> ChainVerification:
        def op(s: Services):
            policy.require(actor, "audit:verify")
            return s.chain.verify_integrity()

        return self._read(op)

    # Certificates

    def issue_certificate(self, entity_id: str, actor: Actor) -> Certificate:
        """Issue, or return the existing ACTIVE, certificate for a certified forge."""

        def op(s: Services):
            forge = s.forges.get(entity_id)
            policy.require(actor, "certification:execute")
            return s.certificates.issue(forge, actor)

        return self._mutate(op)

    def verify_certificate(self, code: str) -> Optional[Certificate]:
        """Public lookup by verification code. Needs no actor."""
        return self._read(lambda s: s.certificates.verify(code))

    def revoke_certificate(self, certificate_id: str, reason: str, actor: Actor) -> Certificate:
        def op(s: Services):
            s.certificates.get(certificate_id)
            policy.require(actor, "certification:revoke")
            return s.certificates.revoke(certificate_id, reason, actor)

        return self._mutate(op)

    def get_certificate(self, certificate_id: str, actor: Actor) -> Certificate:
        def op(s: Services):
            policy.require(actor, "certificates:read")
            return s.certificates.get(certificate_id)

        return self._read(op)

    def list_certificates(
        self,
        actor: Actor,
        entity_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Certificate]:
        if status is not None:
            try:
                status = CertificateStatus(status.upper()).value
            except ValueError:
                raise InvalidRequest(f"Unknown certificate status: {status}") from None

        def op(s: Services):
            policy.require(actor, "certificates:read")
            return s.certificates.list_certificates(entity_id=entity_id, status=status)

        return self._read(op)

    def certificate_view(self, certificate: Certificate) -> dict:
        return public_view(certificate, self.clock())

    def export_certificate(self, certificate_id: str) -> dict:
        """Public projection of a certificate, with its detached signature."""
        return self._read(lambda s: s.certificates.public_view(s.certificates.get(certificate_id)))

    def jwks(self) -> dict:
        return {"keys": [self.signer.get_public_jwk()]}

    # Licenses

    def create_license(
        self,
        actor: Actor,
        digital_twin_id: str,
        grantee_id: str,
        usage_type: str,
        territories: list[str],
        valid_from: datetime,
        valid_until: datetime,
        max_downloads: Optional[int] = None,
    ) -> License:
        def op(s: Services):
            policy.require(actor, "licenses:create")
            return s.licenses.create(
                digital_twin_id,
                grantee_id,
                usage_type,
                territories,
                valid_from,
                valid_until,
                actor,
                max_downloads=max_downloads,
            )

        return self._mutate(op)

    def record_license_usage(self, license_id: str, actor: Actor) -> License:
        def op(s: Services):
            license = self._visible_license(s, license_id, actor)
            # Role check only: an unusable license raises its own conflict below.
            policy.require(actor, "licenses:use")
            return s.licenses.record_usage(license, actor)

        return self._mutate(op)

    def revoke_license(self, license_id: str, reason: str, actor: Actor) -> License:
        def op(s: Services):
            license = s.licenses.get(license_id)
            policy.require(actor, "licenses:revoke")
            return s.licenses.revoke(license, reason, actor)

        return self._mutate(op)

    def get_license(self, license_id: str, actor: Actor) -> License:
        def op(s: Services):
            policy.require(actor, "licenses:read")
            return self._visible_license(s, license_id, actor)

        return self._read(op)

    def list_active_licenses(self, digital_twin_id: str, actor: Actor) -> list[License]:
        def op(s: Services):
            policy.require(actor, "licenses:read")
            licenses = s.licenses.list_active(digital_twin_id)
            if actor.role is Role.CLIENT:
                licenses = [lic for lic in licenses if lic.grantee_id == actor.actor_id]
            return licenses

        return self._read(op)

    def list_licenses_by_grantee(self, grantee_id: str, actor: Actor) -> list[License]:
        if actor.role is Role.CLIENT and grantee_id != actor.actor_id:
            return []

        def op(s: Services):
            policy.require(actor, "licenses:read")
            return s.licenses.list_by_grantee(grantee_id)

        return self._read(op)

    def license_status(self, license: License) -> LicenseStatus:
        return license.effective_status(self.clock())

    def _visible_license(self, s: Services, license_id: str, actor: Actor) -> License:
        license = s.licenses.get(license_id)
        if actor.role is Role.CLIENT and license.grantee_id != actor.actor_id:
            raise LicenseNotFound(license_id)
        return license

    # Maintenance

    def sweep_expired(self) -> dict:
        """Persist EXPIRED for time-expired licenses and certificates.

        Advisory only: every read path already evaluates expiry lazily.
        """

        def op(s: Services):
            licenses = s.licenses.expire_due()
            certificates = s.certificates.expire_due()
            return {"licenses": len(licenses), "certificates": len(certificates)}

        result = self._mutate(op)
        expiry_sweeps.labels(kind="license").inc(result["licenses"])
        expiry_sweeps.labels(kind="certificate").inc(result["certificates"])
        if result["licenses"] or result["certificates"]:
            logger.info("Expiry sweep flipped records", extra=result)
        return result

    def stats(self, actor: Actor) -> dict:
        """Dashboard counters, by effective status."""

        def op(s: Services):
            policy.require(actor, "system:read")
            now = self.clock()
            certificates = Counter(c.effective_status(now).value for c in s.certificates.list_certificates())
            licenses = Counter(lic.effective_status(now).value for lic in s.licenses.list_licenses())
            return {
                "forges": s.forges.counts_by_state(),
                "certificates": {status.value: certificates[status.value] for status in CertificateStatus},
                "licenses": {status.value: licenses[status.value] for status in LicenseStatus},
                "audit_entries": s.chain.length(),
            }

        return self._read(op)


@lru_cache()
def get_core() -> ForjCore:
    """Process-wide core built from settings (FastAPI dependency)."""
    return ForjCore(get_session_factory(), get_settings())
