"""Domain error taxonomy.

Every error the core raises derives from ``ForjError`` and carries
the HTTP status and a stable machine-readable code. Routes let these
propagate; the application maps them to responses in one place.

There is no integrity fault here: chain verification reports
corruption as a value, never as an exception.
"""

from typing import Optional


class ForjError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 400
    code = "forj_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


# Authentication / authorization


class AuthenticationRequired(ForjError):
    status_code = 401
    code = "authentication_required"


class Unauthorized(ForjError):
    """Actor lacks the capability for the action in the entity's current state."""

    status_code = 403
    code = "unauthorized"

    def __init__(self, role: Optional[str], action: str, state: Optional[str] = None):
        detail = f"Role {role or 'anonymous'} may not perform {action}"
        if state:
            detail += f" while forge is {state}"
        super().__init__(detail, role=role, action=action, state=state)


# Lookups


class NotFound(ForjError):
    status_code = 404
    code = "not_found"


class EntityNotFound(NotFound):
    code = "entity_not_found"

    def __init__(self, entity_id: str):
        super().__init__(f"Forge {entity_id} not found", entity_id=entity_id)


class CertificateNotFound(NotFound):
    code = "certificate_not_found"

    def __init__(self, certificate_id: str):
        super().__init__(f"Certificate {certificate_id} not found", certificate_id=certificate_id)


class LicenseNotFound(NotFound):
    code = "license_not_found"

    def __init__(self, license_id: str):
        super().__init__(f"License {license_id} not found", license_id=license_id)


# Domain validation


class DomainError(ForjError):
    status_code = 409
    code = "domain_error"


class InvalidTransition(DomainError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, reason: str):
        super().__init__(
            f"Cannot transition from {current} to {target}: {reason}",
            current=current,
            target=target,
        )
        self.reason = reason


class AlreadyCertified(DomainError):
    """The forge is in the terminal state and is read-only."""

    code = "already_certified"

    def __init__(self, entity_id: str):
        super().__init__(
            f"Forge {entity_id} is certified and read-only", entity_id=entity_id
        )


class NotCertified(DomainError):
    """A certificate was requested for a forge that has not reached CERTIFIED."""

    code = "not_certified"

    def __init__(self, entity_id: str, state: str):
        super().__init__(
            f"Forge {entity_id} is {state}; certificates require CERTIFIED",
            entity_id=entity_id,
            state=state,
        )


class CertificateNotActive(DomainError):
    code = "certificate_not_active"


class AlreadyRevoked(DomainError):
    code = "already_revoked"

    def __init__(self, certificate_id: str, status: str):
        super().__init__(
            f"Certificate {certificate_id} is {status}, not ACTIVE",
            certificate_id=certificate_id,
            status=status,
        )


class AlreadyTerminal(DomainError):
    code = "already_terminal"

    def __init__(self, license_id: str, status: str):
        super().__init__(
            f"License {license_id} is already {status}",
            license_id=license_id,
            status=status,
        )


class QuotaExceeded(DomainError):
    code = "quota_exceeded"

    def __init__(self, license_id: str, max_downloads: int):
        super().__init__(
            f"License {license_id} has used all {max_downloads} downloads",
            license_id=license_id,
            max_downloads=max_downloads,
        )


class LicenseExpired(DomainError):
    code = "license_expired"

    def __init__(self, license_id: str):
        super().__init__(f"License {license_id} has expired", license_id=license_id)


class LicenseRevoked(DomainError):
    code = "license_revoked"

    def __init__(self, license_id: str):
        super().__init__(f"License {license_id} has been revoked", license_id=license_id)


class LicenseNotYetValid(DomainError):
    code = "license_not_yet_valid"

    def __init__(self, license_id: str):
        super().__init__(f"License {license_id} is not valid yet", license_id=license_id)


class InvalidRequest(ForjError):
    status_code = 422
    code = "invalid_request"


# Concurrency


class ConcurrencyConflict(ForjError):
    """Optimistic version check failed twice in a row."""

    status_code = 409
    code = "version_mismatch"
