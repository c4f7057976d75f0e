"""
Committee decision engine.

Records a committee verdict on an RFP. An approval additionally creates a
purchase order, hash-anchors it as evidence and links the evidence back to
the order. Steps, in order:

    1. decision insert                (fatal)
    2. audit committee_decision_recorded (best-effort)
    3. reject -> done
    4. purchase order insert          (fatal)
    5. evidence insert                (fatal)
    6. purchase order evidence link   (fatal)
    7. audit purchase_order_created   (best-effort)

Each fatal step commits on its own. A failure raises PersistenceError naming
the step and the ids already persisted; earlier rows are not rolled back.
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from coprocure.core.errors import PersistenceError, ValidationError
from coprocure.core.identity import clean_identifier, new_record_id, resolve_correlation_id
from coprocure.core.logging import get_logger
from coprocure.core.rbac import ActorContext
from coprocure.db.models import (
    CommitteeDecision, DecisionType, EvidenceRecord, PurchaseOrder, PurchaseOrderStatus, utcnow,
)
from coprocure.db.session import commit_or_raise
from coprocure.services.audit import record_audit_event, record_evidence
from coprocure.services.hashing import hash_payload
from coprocure.services.payloads import (
    DecisionPayload, DecisionSnapshot, PurchaseOrderEvidencePayload, PurchaseOrderSnapshot,
)

logger = get_logger(__name__)

COMMITTEE_ACTOR = ActorContext(role="committee")


@dataclass
class DecisionOutcome:
    decision: CommitteeDecision
    correlation_id: str
    purchase_order: Optional[PurchaseOrder] = None
    evidence: Optional[EvidenceRecord] = None


def _parse_decision(value: Optional[str]) -> DecisionType:
    try:
        return DecisionType((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            f'Invalid decision "{value}". Accepted values: approve, reject',
            details={"accepted": [d.value for d in DecisionType]},
        )


def _with_persisted_ids(error: PersistenceError, **ids) -> PersistenceError:
    error.details.update({k: v for k, v in ids.items() if v is not None})
    return error


def decide(
    db: Session,
    rfp_id: Optional[str],
    decision: Optional[str],
    offer_id: Optional[str] = None,
    justification: Optional[str] = None,
    actor: Optional[ActorContext] = None,
    correlation_id: Optional[str] = None,
) -> DecisionOutcome:
    """
    Record a committee decision and, on approve, create the purchase order
    with its evidence.

    All input is validated before anything is written. A malformed or missing
    ``correlation_id`` is replaced by a freshly minted one.
    """
    actor = actor or COMMITTEE_ACTOR
    rfp_id = clean_identifier(rfp_id)
    offer_id = clean_identifier(offer_id)
    if not rfp_id:
        raise ValidationError("rfp_id is required")
    verdict = _parse_decision(decision)
    if verdict == DecisionType.APPROVE and not offer_id:
        raise ValidationError("offer_id is required when the decision is approve", details={"rfp_id": rfp_id})

    correlation_id = resolve_correlation_id(correlation_id)

    decision_row = CommitteeDecision(
        decision_id=new_record_id(),
        rfp_id=rfp_id,
        offer_id=offer_id,
        decision=verdict.value,
        justification=justification,
        decided_by_user_id=actor.user_id,
        correlation_id=correlation_id,
        decided_at=utcnow(),
    )
    db.add(decision_row)
    commit_or_raise(db, "decision_insert", correlation_id=correlation_id, rfp_id=rfp_id)
    db.refresh(decision_row)

    logger.info(
        f"Committee decision {verdict.value} recorded for RFP {rfp_id}",
        extra={"correlation_id": correlation_id, "entity_type": "rfp", "entity_id": rfp_id},
    )

    decision_hash = hash_payload(DecisionPayload(
        rfp_id=rfp_id,
        offer_id=offer_id,
        decision=verdict.value,
        justification=justification,
        decided_by=actor.user_id,
        decided_at=decision_row.decided_at,
    ))
    record_audit_event(
        db,
        correlation_id=correlation_id,
        event_type="committee_decision_recorded",
        entity_type="rfp",
        entity_id=rfp_id,
        summary=f"Committee {verdict.value} decision recorded",
        payload_hash=decision_hash,
        actor=actor,
    )

    if verdict == DecisionType.REJECT:
        return DecisionOutcome(decision=decision_row, correlation_id=correlation_id)

    purchase_order = PurchaseOrder(
        po_id=new_record_id(),
        rfp_id=rfp_id,
        offer_id=offer_id,
        decision_id=decision_row.decision_id,
        status=PurchaseOrderStatus.CREATED.value,
        po_document_path=None,
        evidence_id=None,
        created_at=utcnow(),
    )
    db.add(purchase_order)
    try:
        commit_or_raise(db, "purchase_order_insert", correlation_id=correlation_id, rfp_id=rfp_id)
    except PersistenceError as e:
        raise _with_persisted_ids(e, decision_id=decision_row.decision_id)
    db.refresh(purchase_order)

    evidence_payload = PurchaseOrderEvidencePayload(
        decision=DecisionSnapshot.model_validate(decision_row),
        purchase_order=PurchaseOrderSnapshot.model_validate(purchase_order),
    )
    try:
        evidence = record_evidence(
            db,
            entity_type="purchase_order",
            entity_id=purchase_order.po_id,
            payload=evidence_payload,
            correlation_id=correlation_id,
        )
    except PersistenceError as e:
        raise _with_persisted_ids(e, decision_id=decision_row.decision_id, po_id=purchase_order.po_id)

    purchase_order.evidence_id = evidence.evidence_id
    try:
        commit_or_raise(db, "purchase_order_evidence_link", correlation_id=correlation_id, rfp_id=rfp_id)
    except PersistenceError as e:
        raise _with_persisted_ids(
            e,
            decision_id=decision_row.decision_id,
            po_id=purchase_order.po_id,
            evidence_id=evidence.evidence_id,
        )

    logger.info(
        f"Purchase order {purchase_order.po_id} created for RFP {rfp_id}",
        extra={"correlation_id": correlation_id, "entity_type": "purchase_order", "entity_id": purchase_order.po_id},
    )
    record_audit_event(
        db,
        correlation_id=correlation_id,
        event_type="purchase_order_created",
        entity_type="purchase_order",
        entity_id=purchase_order.po_id,
        summary=f"Purchase order created for offer {offer_id}",
        payload_hash=evidence.payload_hash_sha256,
        actor=actor,
    )

    return DecisionOutcome(
        decision=decision_row,
        correlation_id=correlation_id,
        purchase_order=purchase_order,
        evidence=evidence,
    )


def list_decisions(db: Session, rfp_id: str) -> List[CommitteeDecision]:
    """Decision history for an RFP, newest first."""
    if not rfp_id:
        raise ValidationError("rfp_id is required")
    return (
        db.query(CommitteeDecision)
        .filter(CommitteeDecision.rfp_id == rfp_id)
        .order_by(desc(CommitteeDecision.decided_at))
        .all()
    )


def purchase_order_for_decision(db: Session, decision_id: str) -> Optional[PurchaseOrder]:
    return db.query(PurchaseOrder).filter(PurchaseOrder.decision_id == decision_id).first()
