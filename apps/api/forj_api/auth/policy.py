"""Access policy: (role, action, state) -> allow/deny.

Pure functions with no I/O. Every mutating entry point of the core calls
``require`` before touching state; read paths call ``is_allowed``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from forj_api.errors import Unauthorized
from forj_api.pipeline.states import ForgeState, parse_state
from forj_api.utils.metrics import access_denials

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    MODEL = "MODEL"
    CLIENT = "CLIENT"


@dataclass(frozen=True)
class Actor:
    """Caller identity as resolved by the authentication layer."""

    actor_id: str
    actor_name: str
    role: Role


SYSTEM_ACTOR = Actor(actor_id="SYSTEM", actor_name="System", role=Role.ADMIN)

_ALL = frozenset(Role)
_STAFF = frozenset({Role.ADMIN, Role.OPERATOR})
_ADMIN = frozenset({Role.ADMIN})

PERMISSIONS = {
    # Forges
    "forges:read": _ALL,
    "forges:create": _STAFF,
    "forges:transition": _STAFF,
    "forges:rollback": _STAFF,
    "forges:delete": _ADMIN,
    # Certification
    "certification:execute": _STAFF,
    "certification:revoke": _ADMIN,
    "certificates:read": _ALL,
    # Licenses
    "licenses:read": _ALL,
    "licenses:create": _STAFF,
    "licenses:revoke": _ADMIN,
    "licenses:use": frozenset({Role.ADMIN, Role.OPERATOR, Role.CLIENT}),
    # Audit
    "audit:read": _ADMIN,
    "audit:verify": _ADMIN,
    "audit:write": _STAFF,
    # System
    "system:read": _ADMIN,
}

# Actions that change a forge and are therefore impossible once it is certified.
FORGE_MUTATIONS = frozenset({"forges:transition", "forges:rollback", "forges:delete"})


def has_permission(role: Optional[Union[Role, str]], action: str) -> bool:
    """Role-only check against the permission table."""
    if not role:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    return role in PERMISSIONS.get(action, frozenset())


def is_allowed(
    role: Optional[Union[Role, str]],
    action: str,
    state: Optional[Union[ForgeState, str]] = None,
    target: Optional[Union[ForgeState, str]] = None,
    license_status: Optional[str] = None,
) -> bool:
    """Decide whether ``role`` may perform ``action`` given the forge state.

    Args:
        role: actor role
        action: permission name, e.g. ``forges:transition``
        state: current state of the forge the action applies to, if any
        target: requested target state for transitions
        license_status: effective license status for ``licenses:use``; when
            omitted only the role is checked
    """
    if not has_permission(role, action):
        return False

    if state is not None and action in FORGE_MUTATIONS:
        if parse_state(state).is_terminal:
            return False

    if action == "forges:transition" and target is not None:
        if parse_state(target).is_terminal and not has_permission(role, "certification:execute"):
            return False

    if action == "licenses:use" and license_status is not None and Role(role) is Role.CLIENT:
        return license_status == "ACTIVE"

    return True


def require(actor: Actor, action: str, **context) -> None:
    """Raise ``Unauthorized`` unless the actor may perform the action."""
    if is_allowed(actor.role, action, **context):
        return
    state = context.get("state")
    state_name = parse_state(state).value if state is not None else None
    access_denials.labels(action=action).inc()
    logger.warning(
        "Access denied",
        extra={"actor_id": actor.actor_id, "role": actor.role.value, "action": action, "state": state_name},
    )
    raise Unauthorized(actor.role.value, action, state_name)


def forge_actions(role: Optional[Union[Role, str]], state: Union[ForgeState, str]) -> dict:
    """Which forge actions are available to ``role`` in ``state``."""
    state = parse_state(state)
    next_state = state.next()
    return {
        "can_advance": next_state is not None
        and is_allowed(role, "forges:transition", state=state, target=next_state),
        "can_rollback": state.previous() is not None and is_allowed(role, "forges:rollback", state=state),
        "can_delete": is_allowed(role, "forges:delete", state=state),
        "can_view": is_allowed(role, "forges:read"),
    }
