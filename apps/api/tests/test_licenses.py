"""Tests for the license ledger."""

import threading
from datetime import timedelta

import pytest

from forj_api.errors import (
    AlreadyTerminal,
    CertificateNotActive,
    InvalidRequest,
    LicenseExpired,
    LicenseNotFound,
    LicenseNotYetValid,
    LicenseRevoked,
    QuotaExceeded,
    Unauthorized,
)
from forj_api.models import LicenseStatus


class TestCreate:
    """Validation on license creation."""

    def test_create(self, license_factory, certified_forge):
        license = license_factory()
        assert license.status == "ACTIVE"
        assert license.current_downloads == 0
        assert license.digital_twin_id == certified_forge.digital_twin_id
        assert license.territories == ["US"]

    def test_audited(self, core, license_factory, admin, certified_forge):
        license = license_factory()
        entry = core.list_audit_events(admin, action="LICENSE_CREATED")[0]
        assert entry.entity_id == certified_forge.id
        assert entry.metadata_json["license_id"] == license.id
        assert entry.metadata_json["usage_type"] == "COMMERCIAL"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"territories": []},
            {"territories": "US"},
            {"usage_type": "BROADCAST"},
            {"max_downloads": 0},
            {"grantee_id": " "},
        ],
    )
    def test_invalid_requests(self, license_factory, overrides):
        with pytest.raises(InvalidRequest):
            license_factory(**overrides)

    def test_window_must_be_ordered_and_in_future(self, license_factory, clock):
        with pytest.raises(InvalidRequest):
            license_factory(valid_from=clock() + timedelta(days=2), valid_until=clock() + timedelta(days=1))
        with pytest.raises(InvalidRequest):
            license_factory(valid_from=clock() - timedelta(days=2), valid_until=clock() - timedelta(days=1))

    def test_requires_active_certificate(self, core, license_factory, certified_forge, admin):
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        core.revoke_certificate(certificate.id, "Consent withdrawn", admin)
        with pytest.raises(CertificateNotActive):
            license_factory()

    def test_unknown_twin(self, license_factory):
        with pytest.raises(CertificateNotActive):
            license_factory(digital_twin_id="DTW-2026-00000000-AAAA")

    def test_create_is_staff_only(self, core, client_actor, certified_forge, clock):
        with pytest.raises(Unauthorized):
            core.create_license(
                client_actor,
                digital_twin_id=certified_forge.digital_twin_id,
                grantee_id="client_1",
                usage_type="EDITORIAL",
                territories=["FR"],
                valid_from=clock(),
                valid_until=clock() + timedelta(days=1),
            )


class TestUsage:
    """Quota, expiry and revocation on usage."""

    def test_quota_allows_exactly_max_downloads(self, core, license_factory, client_actor):
        license = license_factory(max_downloads=5)
        for n in range(1, 6):
            assert core.record_license_usage(license.id, client_actor).current_downloads == n
        with pytest.raises(QuotaExceeded):
            core.record_license_usage(license.id, client_actor)
        assert core.get_license(license.id, client_actor).current_downloads == 5

    def test_concurrent_usage_never_overcounts(self, core, license_factory, client_actor):
        license = license_factory(max_downloads=5)
        outcomes = []
        lock = threading.Lock()

        def use():
            try:
                core.record_license_usage(license.id, client_actor)
                result = "ok"
            except QuotaExceeded:
                result = "quota"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=use) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 5
        assert outcomes.count("quota") == 7
        assert core.get_license(license.id, client_actor).current_downloads == 5

    def test_unlimited_license(self, core, license_factory, operator):
        license = license_factory(max_downloads=None)
        for _ in range(20):
            core.record_license_usage(license.id, operator)
        assert core.get_license(license.id, operator).remaining_downloads is None

    def test_lazy_expiry_without_sweep(self, core, license_factory, operator, clock):
        license = license_factory(valid_until=clock() + timedelta(days=1))
        clock.advance(days=2)

        assert core.get_license(license.id, operator).status == "ACTIVE"
        assert core.license_status(license) is LicenseStatus.EXPIRED
        with pytest.raises(LicenseExpired):
            core.record_license_usage(license.id, operator)

    def test_failed_usage_leaves_no_trace(self, core, license_factory, operator, admin, clock):
        license = license_factory(valid_until=clock() + timedelta(days=1))
        clock.advance(days=2)
        before = core.verify_audit_integrity(admin).length

        with pytest.raises(LicenseExpired):
            core.record_license_usage(license.id, operator)
        assert core.verify_audit_integrity(admin).length == before
        assert core.get_license(license.id, operator).current_downloads == 0

    def test_client_on_expired_license_gets_expiry_conflict(self, core, license_factory, client_actor, clock):
        license = license_factory(valid_until=clock() + timedelta(days=1))
        clock.advance(days=2)
        with pytest.raises(LicenseExpired) as exc:
            core.record_license_usage(license.id, client_actor)
        assert exc.value.status_code == 409

    def test_client_on_revoked_license_gets_revocation_conflict(self, core, license_factory, client_actor, admin):
        license = license_factory()
        core.revoke_license(license.id, "Breach of terms", admin)
        with pytest.raises(LicenseRevoked) as exc:
            core.record_license_usage(license.id, client_actor)
        assert exc.value.status_code == 409

    def test_usage_still_needs_the_role(self, core, license_factory, model_actor):
        license = license_factory()
        with pytest.raises(Unauthorized):
            core.record_license_usage(license.id, model_actor)

    def test_not_yet_valid(self, core, license_factory, operator, clock):
        license = license_factory(valid_from=clock() + timedelta(days=1), valid_until=clock() + timedelta(days=5))
        assert core.license_status(license) is LicenseStatus.PENDING
        with pytest.raises(LicenseNotYetValid):
            core.record_license_usage(license.id, operator)

    def test_revoked_license_blocks_usage(self, core, license_factory, admin, operator):
        license = license_factory()
        core.revoke_license(license.id, "Breach of terms", admin)
        with pytest.raises(LicenseRevoked):
            core.record_license_usage(license.id, operator)

    def test_usage_audited(self, core, license_factory, client_actor, admin):
        license = license_factory()
        core.record_license_usage(license.id, client_actor)
        entry = core.list_audit_events(admin, action="LICENSE_USED")[0]
        assert entry.actor_id == "client_1"
        assert entry.metadata_json["current_downloads"] == 1


class TestCertificateRevocation:
    """Certificate revocation does not cascade to license status."""

    def test_license_stays_active_but_usage_blocked(self, core, license_factory, certified_forge, admin, operator):
        license = license_factory()
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        core.revoke_certificate(certificate.id, "Consent withdrawn", admin)

        assert core.license_status(core.get_license(license.id, admin)) is LicenseStatus.ACTIVE
        with pytest.raises(CertificateNotActive):
            core.record_license_usage(license.id, operator)

    def test_usage_allowed_when_check_disabled(self, core, license_factory, certified_forge, admin, operator, settings):
        license = license_factory()
        certificate = core.list_certificates(admin, entity_id=certified_forge.id)[0]
        core.revoke_certificate(certificate.id, "Consent withdrawn", admin)

        settings.license_requires_active_certificate = False
        assert core.record_license_usage(license.id, operator).current_downloads == 1


class TestRevoke:
    """License revocation."""

    def test_revoke_once(self, core, license_factory, admin):
        license = license_factory()
        revoked = core.revoke_license(license.id, "Breach of terms", admin)
        assert revoked.status == "REVOKED"
        assert revoked.revoked_reason == "Breach of terms"
        with pytest.raises(AlreadyTerminal):
            core.revoke_license(license.id, "Again", admin)

    def test_expired_license_cannot_be_revoked(self, core, license_factory, admin, clock):
        license = license_factory(valid_until=clock() + timedelta(days=1))
        clock.advance(days=2)
        with pytest.raises(AlreadyTerminal):
            core.revoke_license(license.id, "Too late", admin)

    def test_revoke_is_admin_only(self, core, license_factory, operator):
        license = license_factory()
        with pytest.raises(Unauthorized):
            core.revoke_license(license.id, "Breach of terms", operator)


class TestQueries:
    """Read projections."""

    def test_list_active_excludes_expired_and_revoked(self, core, license_factory, certified_forge, admin, clock):
        keep = license_factory()
        revoked = license_factory()
        license_factory(valid_until=clock() + timedelta(hours=1))
        core.revoke_license(revoked.id, "Breach of terms", admin)
        clock.advance(hours=2)

        active = core.list_active_licenses(certified_forge.digital_twin_id, admin)
        assert [lic.id for lic in active] == [keep.id]

    def test_client_sees_only_own_licenses(self, core, license_factory, client_actor, certified_forge):
        own = license_factory(grantee_id="client_1")
        other = license_factory(grantee_id="client_2")

        assert [lic.id for lic in core.list_licenses_by_grantee("client_1", client_actor)] == [own.id]
        assert core.list_licenses_by_grantee("client_2", client_actor) == []
        with pytest.raises(LicenseNotFound):
            core.get_license(other.id, client_actor)
        visible = core.list_active_licenses(certified_forge.digital_twin_id, client_actor)
        assert [lic.id for lic in visible] == [own.id]
