"""Forge pipeline state machine.

A forge advances one state at a time, may roll back to any earlier state,
and is locked for good once it reaches CERTIFIED.
"""

import hashlib
import logging
import secrets
from typing import Optional, Union

from sqlalchemy.orm import Session

from forj_api.auth.policy import Actor
from forj_api.errors import AlreadyCertified, EntityNotFound, InvalidTransition
from forj_api.ledger.canonical import canonicalize, sha256_hex
from forj_api.ledger.codes import ALPHABET
from forj_api.ledger.service import AuditAction, AuditChain
from forj_api.models import Forge
from forj_api.pipeline.states import FORGE_STATES, INITIAL_STATE, ForgeState, parse_state
from forj_api.utils.clock import Clock, utcnow
from forj_api.utils.ids import new_id
from forj_api.utils.metrics import transition_rejections, transitions

logger = logging.getLogger(__name__)

MAX_TWIN_ID_ATTEMPTS = 5


def validate_transition(current: Union[ForgeState, str], target: Union[ForgeState, str]) -> None:
    """Raise ``InvalidTransition`` unless ``current -> target`` is legal.

    Legal moves are a single step forward or a rollback to any earlier
    state. Nothing leaves the terminal state.
    """
    current = parse_state(current)
    target = parse_state(target)

    if current.is_terminal:
        raise InvalidTransition(current.value, target.value, "certified forges are read-only")
    if target.position == current.position + 1:
        return
    if target.position < current.position:
        return
    if target is current:
        raise InvalidTransition(current.value, target.value, "already in this state")
    raise InvalidTransition(current.value, target.value, "cannot skip steps")


def is_valid_transition(current: Union[ForgeState, str], target: Union[ForgeState, str]) -> bool:
    try:
        validate_transition(current, target)
    except InvalidTransition:
        return False
    return True


def derive_seed_hash(forge: Forge) -> str:
    """Deterministic seed artifact for a forge."""
    material = {
        "forge_id": forge.id,
        "owner_id": forge.owner_id,
        "created_at": forge.created_at.isoformat(),
    }
    return f"sha256:{sha256_hex(canonicalize(material))}"


class ForgeStateMachine:
    """Validate and apply forge transitions, recording each in the audit chain."""

    def __init__(self, db: Session, chain: AuditChain, clock: Clock = utcnow):
        self.db = db
        self.chain = chain
        self.clock = clock

    def get(self, entity_id: str) -> Forge:
        forge = self.db.get(Forge, entity_id)
        if forge is None or forge.deleted_at is not None:
            raise EntityNotFound(entity_id)
        return forge

    def list_forges(self, owner_id: Optional[str] = None, state: Optional[str] = None) -> list[Forge]:
        query = self.db.query(Forge).filter(Forge.deleted_at.is_(None))
        if owner_id:
            query = query.filter(Forge.owner_id == owner_id)
        if state:
            query = query.filter(Forge.current_state == parse_state(state).value)
        return query.order_by(Forge.created_at.desc()).all()

    def create(self, owner_id: str, actor: Actor) -> Forge:
        now = self.clock()
        forge = Forge(
            id=new_id("frg"),
            owner_id=owner_id,
            current_state=INITIAL_STATE.value,
            created_by=actor.actor_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(forge)
        self.db.flush()

        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.FORGE_CREATED,
            entity_id=forge.id,
            metadata={"owner_id": owner_id, "state": forge.current_state},
        )
        logger.info("Forge created", extra={"forge_id": forge.id, "owner_id": owner_id})
        return forge

    def apply(self, forge: Forge, target: Union[ForgeState, str], actor: Actor) -> Forge:
        """Move ``forge`` to ``target`` and append the matching audit entry."""
        if forge.is_certified:
            transition_rejections.labels(reason="already_certified").inc()
            raise AlreadyCertified(forge.id)

        current = forge.state
        target = parse_state(target)
        try:
            validate_transition(current, target)
        except InvalidTransition as e:
            transition_rejections.labels(reason="invalid_transition").inc()
            logger.warning(
                "Invalid forge state transition",
                extra={
                    "forge_id": forge.id,
                    "from_state": current.value,
                    "target_state": target.value,
                    "error": e.reason,
                },
            )
            raise

        now = self.clock()
        forge.current_state = target.value
        forge.updated_at = now
        if target is ForgeState.SEEDED and not forge.seed_hash:
            forge.seed_hash = derive_seed_hash(forge)
        if target.is_terminal:
            forge.digital_twin_id = self._mint_digital_twin_id(forge)
            forge.certified_at = now
        self.db.flush()

        metadata = {"from": current.value, "to": target.value, "version": forge.version}
        if target.is_terminal:
            action = AuditAction.CERTIFIED
            metadata["digital_twin_id"] = forge.digital_twin_id
        else:
            action = AuditAction.STATE_CHANGED
            if target.position < current.position:
                metadata["direction"] = "rollback"
            else:
                metadata["direction"] = "advance"
        self.chain.append(actor.actor_id, actor.actor_name, action, entity_id=forge.id, metadata=metadata)

        transitions.labels(from_state=current.value, to_state=target.value).inc()
        logger.info(
            "Forge state changed",
            extra={"forge_id": forge.id, "from_state": current.value, "to_state": target.value},
        )
        return forge

    def rollback_target(self, forge: Forge) -> ForgeState:
        """Previous state of ``forge``; raises if there is none to return to."""
        if forge.is_certified:
            raise AlreadyCertified(forge.id)
        previous = forge.state.previous()
        if previous is None:
            raise InvalidTransition(forge.current_state, forge.current_state, "no earlier state to roll back to")
        return previous

    def delete(self, forge: Forge, actor: Actor) -> Forge:
        """Soft-delete a forge that has not been certified."""
        if forge.is_certified:
            raise AlreadyCertified(forge.id)
        forge.deleted_at = self.clock()
        self.db.flush()
        self.chain.append(
            actor.actor_id,
            actor.actor_name,
            AuditAction.FORGE_DELETED,
            entity_id=forge.id,
            metadata={"state": forge.current_state},
        )
        logger.info("Forge deleted", extra={"forge_id": forge.id, "actor_id": actor.actor_id})
        return forge

    def _mint_digital_twin_id(self, forge: Forge) -> str:
        forge_part = hashlib.sha256(forge.id.encode()).hexdigest()[:8].upper()
        for _ in range(MAX_TWIN_ID_ATTEMPTS):
            suffix = "".join(secrets.choice(ALPHABET) for _ in range(4))
            candidate = f"DTW-{self.clock().year}-{forge_part}-{suffix}"
            if self.db.query(Forge.id).filter(Forge.digital_twin_id == candidate).first() is None:
                return candidate
        raise RuntimeError("Could not allocate a unique digital twin id")

    def counts_by_state(self) -> dict:
        counts = {state.value: 0 for state in FORGE_STATES}
        for forge in self.list_forges():
            counts[forge.current_state] += 1
        return counts
