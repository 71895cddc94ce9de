"""Tests for certificate issuance, verification and revocation."""

from datetime import timedelta

import pytest

from forj_api.core import ForjCore
from forj_api.errors import AlreadyRevoked, InvalidRequest, NotCertified, Unauthorized
from forj_api.models import Certificate, CertificateStatus

from conftest import advance_to_certified


class TestIssue:
    """Issuance is idempotent while an ACTIVE certificate exists."""

    def test_certification_auto_issues_certificate(self, core, certified_forge, admin):
        certificates = core.list_certificates(admin, entity_id=certified_forge.id)
        assert len(certificates) == 1
        assert certificates[0].status == CertificateStatus.ACTIVE.value
        assert certificates[0].digital_twin_id == certified_forge.digital_twin_id

    def test_issue_twice_returns_same_certificate(self, core, certified_forge, operator, db):
        first = core.issue_certificate(certified_forge.id, operator)
        second = core.issue_certificate(certified_forge.id, operator)

        assert first.id == second.id
        assert first.verification_code == second.verification_code
        active = db.query(Certificate).filter(
            Certificate.entity_id == certified_forge.id,
            Certificate.status == "ACTIVE",
        )
        assert active.count() == 1

    def test_idempotent_issue_writes_no_audit_entry(self, core, certified_forge, operator, admin):
        before = core.verify_audit_integrity(admin).length
        core.issue_certificate(certified_forge.id, operator)
        assert core.verify_audit_integrity(admin).length == before

    def test_issue_requires_certified_forge(self, core, operator):
        forge = core.create_entity("model_1", operator)
        with pytest.raises(NotCertified):
            core.issue_certificate(forge.id, operator)

    def test_issue_requires_certification_execute(self, core, certified_forge, client_actor):
        with pytest.raises(Unauthorized):
            core.issue_certificate(certified_forge.id, client_actor)

    def test_manual_issue_when_auto_issue_disabled(self, session_factory, settings, clock, signer, operator, admin):
        settings.auto_issue_certificate = False
        core = ForjCore(session_factory, settings=settings, clock=clock, signer=signer)
        forge = advance_to_certified(core, core.create_entity("model_1", operator).id, operator)
        assert core.list_certificates(admin, entity_id=forge.id) == []

        certificate = core.issue_certificate(forge.id, operator)
        assert certificate.status == "ACTIVE"

    def test_signature_verifies_against_signer(self, core, certified_forge, admin, signer):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        assert certificate.key_id == "test-key-1"
        assert certificate.alg == "PS256"
        assert signer.verify_payload(certificate.signed_payload(), certificate.signature)

        tampered = {**certificate.signed_payload(), "digital_twin_id": "DTW-2026-00000000-AAAA"}
        assert not signer.verify_payload(tampered, certificate.signature)


class TestVerify:
    """Public lookup by verification code."""

    def test_verify_normalizes_code(self, core, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        typed = certificate.verification_code.replace("-", "").lower()

        found = core.verify_certificate(typed)
        assert found.id == certificate.id

    def test_unknown_and_malformed_codes_look_the_same(self, core, certified_forge):
        assert core.verify_certificate("ABCD-EFGH-JKLM-NPQR") is None
        assert core.verify_certificate("not a code") is None
        assert core.verify_certificate("") is None

    def test_export_includes_signature_material(self, core, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        view = core.export_certificate(certificate.id)

        assert view["status"] == "ACTIVE"
        assert view["signed_payload"]["certificate_id"] == certificate.id
        assert view["verification"]["jwks_url"] == "/v1/keys/jwks.json"
        assert "revoked_reason" not in view


class TestRevoke:
    """Revocation is one-way and leaves the forge certified."""

    def test_revoke(self, core, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        revoked = core.revoke_certificate(certificate.id, "Consent withdrawn", admin)

        assert revoked.status == "REVOKED"
        assert revoked.revoked_by == "admin_1"
        assert core.get_entity(certified_forge.id, admin).is_certified

        view = core.certificate_view(core.verify_certificate(certificate.verification_code))
        assert view["status"] == "REVOKED"
        assert view["revoked_reason"] == "Consent withdrawn"

    def test_revoke_twice_fails(self, core, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        core.revoke_certificate(certificate.id, "Consent withdrawn", admin)
        with pytest.raises(AlreadyRevoked):
            core.revoke_certificate(certificate.id, "Again", admin)

    def test_revoke_requires_reason(self, core, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        with pytest.raises(InvalidRequest):
            core.revoke_certificate(certificate.id, "  ", admin)

    def test_revoke_is_admin_only(self, core, certified_forge, admin, operator):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        with pytest.raises(Unauthorized):
            core.revoke_certificate(certificate.id, "Consent withdrawn", operator)

    def test_reissue_after_revocation_gets_new_code(self, core, certified_forge, admin, operator):
        old = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        core.revoke_certificate(old.id, "Key compromise", admin)

        new = core.issue_certificate(certified_forge.id, operator)
        assert new.id != old.id
        assert new.verification_code != old.verification_code
        assert core.verify_certificate(old.verification_code).status == "REVOKED"


class TestExpiry:
    """Time-based expiry is evaluated lazily."""

    @pytest.fixture
    def expiring_core(self, session_factory, settings, clock, signer):
        settings.certificate_validity_days = 10
        return ForjCore(session_factory, settings=settings, clock=clock, signer=signer)

    def test_certificate_expires_lazily(self, expiring_core, operator, admin, clock):
        forge = advance_to_certified(expiring_core, expiring_core.create_entity("model_1", operator).id, operator)
        certificate = expiring_core.list_certificates(admin, entity_id=forge.id)[0]
        assert certificate.expires_at == clock() + timedelta(days=10)

        clock.advance(days=11)
        assert certificate.effective_status(clock()) is CertificateStatus.EXPIRED
        assert expiring_core.list_certificates(admin, status="ACTIVE") == []

    def test_issue_after_expiry_replaces_certificate(self, expiring_core, operator, admin, clock):
        forge = advance_to_certified(expiring_core, expiring_core.create_entity("model_1", operator).id, operator)
        old = expiring_core.list_certificates(admin, entity_id=forge.id)[0]

        clock.advance(days=11)
        new = expiring_core.issue_certificate(forge.id, operator)
        assert new.id != old.id
        assert expiring_core.get_certificate(old.id, admin).status == "EXPIRED"
