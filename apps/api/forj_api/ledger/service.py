"""Tamper-evident audit chain with hash linking."""

import json
import logging
import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Text, cast
from sqlalchemy.orm import Session, defer

from forj_api.errors import InvalidRequest
from forj_api.ledger.canonical import entry_hash, normalize
from forj_api.models import AuditChainHead, AuditEntry
from forj_api.utils.clock import Clock, utcnow
from forj_api.utils.ids import new_id
from forj_api.utils.metrics import audit_appends, audit_verification_duration, audit_verifications

logger = logging.getLogger(__name__)

HEAD_ID = 1
ACTION_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{1,63}$")


class AuditAction(str, Enum):
    """Actions written by the core itself."""

    FORGE_CREATED = "FORGE_CREATED"
    STATE_CHANGED = "STATE_CHANGED"
    CERTIFIED = "CERTIFIED"
    FORGE_DELETED = "FORGE_DELETED"
    CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED"
    CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED"
    CERTIFICATE_EXPIRED = "CERTIFICATE_EXPIRED"
    LICENSE_CREATED = "LICENSE_CREATED"
    LICENSE_USED = "LICENSE_USED"
    LICENSE_REVOKED = "LICENSE_REVOKED"
    LICENSE_EXPIRED = "LICENSE_EXPIRED"


RESERVED_ACTIONS = frozenset(action.value for action in AuditAction)


@dataclass
class ChainVerification:
    """Result of a full-chain replay. Never raised, always returned."""

    valid: bool
    length: int
    checked: int
    broken_at_index: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class AuditChain:
    """Append-only ledger; each entry's hash covers its predecessor's hash.

    The chain pointer lives in ``audit_chain_head``. ``append`` reads it,
    writes the entry and advances it inside the caller's transaction, so a
    failed commit leaves neither the entry nor the advanced pointer behind.
    Callers must serialize appends (see ``ForjCore``); the head row's
    version column turns any interleaving that slips through into a
    ``StaleDataError`` instead of a fork.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _head(self) -> AuditChainHead:
        head = (
            self.db.query(AuditChainHead)
            .filter(AuditChainHead.id == HEAD_ID)
            .with_for_update()
            .first()
        )
        if head is None:
            head = AuditChainHead(id=HEAD_ID, last_hash="", length=0, updated_at=self.clock())
            self.db.add(head)
            self.db.flush()
        return head

    def append(
        self,
        actor_id: str,
        actor_name: str,
        action: str,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AuditEntry:
        """Append one entry and advance the chain pointer."""
        action = action.value if isinstance(action, AuditAction) else action
        try:
            metadata = normalize(metadata or {})
        except (TypeError, ValueError) as e:
            raise InvalidRequest(f"Audit metadata is not serializable: {e}") from e

        head = self._head()
        timestamp = self.clock()
        previous_hash = head.last_hash or ""
        integrity_hash = entry_hash(previous_hash, actor_id, action, entity_id, timestamp, metadata)

        entry = AuditEntry(
            id=new_id("aud"),
            sequence=head.length,
            actor_id=actor_id,
            actor_name=actor_name,
            action=action,
            entity_id=entity_id,
            timestamp=timestamp,
            metadata_json=metadata,
            integrity_hash=integrity_hash,
            previous_hash=previous_hash,
        )
        self.db.add(entry)

        head.last_hash = integrity_hash
        head.length = head.length + 1
        head.updated_at = timestamp
        self.db.flush()

        audit_appends.labels(action=action).inc()
        logger.debug(
            "Audit entry appended",
            extra={"action": action, "entity_id": entity_id, "sequence": entry.sequence},
        )
        return entry

    def length(self) -> int:
        head = self.db.query(AuditChainHead).filter(AuditChainHead.id == HEAD_ID).first()
        return head.length if head else 0

    def list_entries(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Entries newest first, optionally filtered. Read-only."""
        query = self.db.query(AuditEntry)
        if actor_id:
            query = query.filter(AuditEntry.actor_id == actor_id)
        if action:
            query = query.filter(AuditEntry.action == action)
        if entity_id:
            query = query.filter(AuditEntry.entity_id == entity_id)
        if since:
            query = query.filter(AuditEntry.timestamp >= since)
        if until:
            query = query.filter(AuditEntry.timestamp <= until)
        query = query.order_by(AuditEntry.sequence.desc())
        if offset:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    def verify_integrity(self) -> ChainVerification:
        """Replay the chain oldest first and report the first inconsistent entry.

        Only entries below the length captured from the chain head are
        replayed, so appends committed mid-walk are ignored rather than
        reported as breaks.
        """
        started = time.monotonic()
        head = self.db.query(AuditChainHead).filter(AuditChainHead.id == HEAD_ID).first()
        length = head.length if head else 0
        # Metadata is read as stored text so a corrupt row is reported, not raised
        rows = (
            self.db.query(AuditEntry, cast(AuditEntry.metadata_json, Text))
            .options(defer(AuditEntry.metadata_json))
            .filter(AuditEntry.sequence < length)
            .order_by(AuditEntry.sequence.asc())
            .all()
        )

        result = self._replay(rows, length, head.last_hash if head else "")

        audit_verification_duration.observe(time.monotonic() - started)
        audit_verifications.labels(result="valid" if result.valid else "broken").inc()
        if not result.valid:
            logger.error(
                "Audit chain broken",
                extra={"broken_at_index": result.broken_at_index, "reason": result.reason},
            )
        return result

    def _replay(self, rows: list, length: int, head_hash: str) -> ChainVerification:
        previous_hash = ""
        for index, (entry, raw_metadata) in enumerate(rows):
            try:
                metadata = json.loads(raw_metadata)
            except (TypeError, ValueError):
                logger.error("Undecodable audit metadata", extra={"index": index})
                return _broken(length, index, "entry could not be decoded")
            try:
                if entry.sequence != index:
                    return _broken(length, index, "sequence gap")
                if (entry.previous_hash or "") != previous_hash:
                    return _broken(length, index, "previous hash does not match predecessor")
                expected = entry_hash(
                    previous_hash,
                    entry.actor_id,
                    entry.action,
                    entry.entity_id,
                    entry.timestamp,
                    metadata,
                )
            except Exception:
                logger.exception("Unreadable audit entry", extra={"index": index})
                return _broken(length, index, "entry could not be recomputed")
            if expected != entry.integrity_hash:
                return _broken(length, index, "integrity hash mismatch")
            previous_hash = expected

        if len(rows) < length:
            return _broken(length, len(rows), "entries missing from chain")
        if (head_hash or "") != previous_hash:
            return _broken(length, length, "chain head does not match last entry")
        return ChainVerification(valid=True, length=length, checked=len(rows))


def _broken(length: int, index: int, reason: str) -> ChainVerification:
    return ChainVerification(
        valid=False,
        length=length,
        checked=index,
        broken_at_index=index,
        reason=reason,
    )


def validate_external_action(action: str) -> str:
    """Check an action name submitted through the public append endpoint."""
    action = (action or "").strip().upper()
    if not ACTION_PATTERN.match(action):
        raise InvalidRequest(f"Invalid audit action name: {action!r}")
    if action in RESERVED_ACTIONS:
        raise InvalidRequest(f"Audit action {action} is reserved for the core")
    return action
