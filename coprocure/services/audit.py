"""
Evidence and audit recording.

Evidence records are insert-only proofs (payload digest) attached to an
entity. Audit events are an append-only log linked by correlation_id.

Audit writes are best-effort relative to the business write that triggered
them: a failed audit insert is rolled back, logged and reported as ``None``,
never raised.
"""
from typing import Any, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coprocure.core.config import settings
from coprocure.core.errors import NotFoundError, ValidationError
from coprocure.core.identity import new_record_id
from coprocure.core.logging import audit_logger, get_logger
from coprocure.core.rbac import ActorContext
from coprocure.db.models import AuditEvent, EvidenceRecord
from coprocure.db.session import commit_or_raise
from coprocure.services.hashing import hash_payload

logger = get_logger(__name__)


def record_evidence(
    db: Session,
    entity_type: str,
    entity_id: str,
    payload: Any,
    correlation_id: Optional[str] = None,
    tx_hash: Optional[str] = None,
) -> EvidenceRecord:
    """Hash ``payload`` and persist a new evidence record. Raises PersistenceError."""
    evidence = EvidenceRecord(
        evidence_id=new_record_id(),
        entity_type=entity_type,
        entity_id=entity_id,
        payload_hash_sha256=hash_payload(payload),
        tx_hash=tx_hash,
    )
    db.add(evidence)
    commit_or_raise(
        db,
        "evidence_insert",
        correlation_id=correlation_id,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    db.refresh(evidence)
    return evidence


def record_audit_event(
    db: Session,
    correlation_id: str,
    event_type: str,
    entity_type: Optional[str],
    entity_id: Optional[str],
    summary: str,
    payload_hash: Optional[str],
    actor: Optional[ActorContext] = None,
) -> Optional[AuditEvent]:
    """
    Append an audit event.

    Must be called after the triggering business write has been committed;
    on failure only the audit insert is rolled back.
    """
    actor = actor or ActorContext()
    audit_event = AuditEvent(
        event_id=new_record_id(),
        correlation_id=correlation_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        payload_hash_sha256=payload_hash,
        actor_user_id=actor.user_id,
        actor_role=actor.role,
        company_id=actor.company_id,
    )
    details = {"summary": summary, "payload_hash_sha256": payload_hash}
    try:
        db.add(audit_event)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Audit write failed for {event_type}: {e}",
            extra={"correlation_id": correlation_id, "action": event_type},
        )
        audit_logger.log(
            event_type,
            correlation_id=correlation_id,
            user_id=actor.user_id,
            company_id=actor.company_id,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            persisted=False,
        )
        return None

    audit_logger.log(
        event_type,
        correlation_id=correlation_id,
        user_id=actor.user_id,
        company_id=actor.company_id,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    return audit_event


def list_audit_events(
    db: Session,
    correlation_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    company_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[AuditEvent]:
    """Newest first. Without any filter the default limit applies."""
    query = db.query(AuditEvent)

    if correlation_id:
        query = query.filter(AuditEvent.correlation_id == correlation_id)
    if entity_id:
        query = query.filter(AuditEvent.entity_id == entity_id)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if company_id:
        query = query.filter(AuditEvent.company_id == company_id)

    has_filter = any((correlation_id, entity_id, entity_type, company_id))
    if limit is None and not has_filter:
        limit = settings.AUDIT_DEFAULT_LIMIT

    query = query.order_by(desc(AuditEvent.created_at), desc(AuditEvent.id))
    if limit:
        query = query.limit(limit)
    return query.all()


def audit_chain(db: Session, correlation_id: str) -> List[AuditEvent]:
    """All events of one workflow run, in the order they were appended."""
    if not correlation_id:
        raise ValidationError("correlation_id is required")
    return (
        db.query(AuditEvent)
        .filter(AuditEvent.correlation_id == correlation_id)
        .order_by(AuditEvent.id)
        .all()
    )


def evidence_for_entity(db: Session, entity_type: str, entity_id: str) -> List[EvidenceRecord]:
    if not entity_type or not entity_id:
        raise ValidationError("entity_type and entity_id are required")
    return (
        db.query(EvidenceRecord)
        .filter(
            EvidenceRecord.entity_type == entity_type,
            EvidenceRecord.entity_id == entity_id,
        )
        .order_by(desc(EvidenceRecord.created_at))
        .all()
    )


def verify_evidence(db: Session, evidence_id: str, payload: Any) -> dict:
    """Recompute the digest of ``payload`` and compare it with the stored one."""
    evidence = db.query(EvidenceRecord).filter(EvidenceRecord.evidence_id == evidence_id).first()
    if not evidence:
        raise NotFoundError(f"Evidence {evidence_id} not found")

    computed = hash_payload(payload)
    return {
        "evidence_id": evidence.evidence_id,
        "entity_type": evidence.entity_type,
        "entity_id": evidence.entity_id,
        "stored_hash": evidence.payload_hash_sha256,
        "computed_hash": computed,
        "matches": computed == evidence.payload_hash_sha256,
    }
