"""
Tests for the committee decision engine.

Covers the approve and reject paths, validation before any write, partial
failures at each fatal step, and best-effort audit writes.
"""
import pytest

from coprocure.core.errors import PersistenceError, ValidationError
from coprocure.core.identity import is_valid_uuid
from coprocure.db.models import AuditEvent, CommitteeDecision, EvidenceRecord, PurchaseOrder
from coprocure.services import committee
from coprocure.services.audit import audit_chain, verify_evidence
from coprocure.services.hashing import hash_payload
from coprocure.services.payloads import (
    DecisionSnapshot, PurchaseOrderEvidencePayload, PurchaseOrderSnapshot,
)

CALLER_CORRELATION_ID = "9b1deb4d-3b7d-4bad-9bdd-2b0d7b3dcb6d"


class TestApprove:

    def test_creates_decision_purchase_order_and_evidence(self, db_session, committee_member):
        outcome = committee.decide(
            db_session,
            rfp_id="rfp-100",
            decision="approve",
            offer_id="offer-7",
            justification="Best lead time",
            actor=committee_member,
        )

        decision = outcome.decision
        po = outcome.purchase_order
        evidence = outcome.evidence

        assert decision.decision == "approve"
        assert decision.decided_by_user_id == "user-committee"
        assert po.status == "created"
        assert po.rfp_id == "rfp-100"
        assert po.offer_id == "offer-7"
        assert po.decision_id == decision.decision_id
        assert po.po_document_path is None
        assert evidence.entity_type == "purchase_order"
        assert evidence.entity_id == po.po_id
        assert evidence.tx_hash is None
        assert po.evidence_id == evidence.evidence_id

        stored = db_session.query(PurchaseOrder).filter(PurchaseOrder.po_id == po.po_id).one()
        assert stored.evidence_id == evidence.evidence_id

    def test_audit_chain_links_both_events(self, db_session, committee_member):
        outcome = committee.decide(
            db_session, "rfp-100", "approve", offer_id="offer-7", actor=committee_member,
        )

        chain = audit_chain(db_session, outcome.correlation_id)
        assert [e.event_type for e in chain] == ["committee_decision_recorded", "purchase_order_created"]
        assert chain[0].entity_type == "rfp"
        assert chain[0].entity_id == "rfp-100"
        assert chain[1].entity_type == "purchase_order"
        assert chain[1].entity_id == outcome.purchase_order.po_id
        assert chain[1].payload_hash_sha256 == outcome.evidence.payload_hash_sha256
        assert all(e.actor_role == "committee" for e in chain)

    def test_evidence_hash_is_reproducible(self, db_session, committee_member):
        outcome = committee.decide(
            db_session, "rfp-100", "approve", offer_id="offer-7", actor=committee_member,
        )
        as_inserted = PurchaseOrderSnapshot.model_validate(outcome.purchase_order).model_copy(
            update={"evidence_id": None}
        )
        payload = PurchaseOrderEvidencePayload(
            decision=DecisionSnapshot.model_validate(outcome.decision),
            purchase_order=as_inserted,
        )

        assert hash_payload(payload) == outcome.evidence.payload_hash_sha256
        assert verify_evidence(db_session, outcome.evidence.evidence_id, payload)["matches"] is True

    def test_requires_offer(self, db_session, committee_member):
        with pytest.raises(ValidationError):
            committee.decide(db_session, "rfp-100", "approve", offer_id=None, actor=committee_member)
        assert db_session.query(CommitteeDecision).count() == 0
        assert db_session.query(AuditEvent).count() == 0


class TestReject:

    def test_records_decision_only(self, db_session, committee_member):
        outcome = committee.decide(
            db_session, "rfp-200", "reject", justification="Over budget", actor=committee_member,
        )

        assert outcome.decision.decision == "reject"
        assert outcome.purchase_order is None
        assert outcome.evidence is None
        assert db_session.query(PurchaseOrder).count() == 0
        assert db_session.query(EvidenceRecord).count() == 0

        chain = audit_chain(db_session, outcome.correlation_id)
        assert [e.event_type for e in chain] == ["committee_decision_recorded"]

    def test_offer_is_optional_but_kept(self, db_session, committee_member):
        outcome = committee.decide(db_session, "rfp-200", "reject", offer_id="offer-3", actor=committee_member)
        assert outcome.decision.offer_id == "offer-3"


class TestValidation:

    @pytest.mark.parametrize("rfp_id,decision", [
        (None, "approve"),
        ("   ", "reject"),
        ("rfp-1", "maybe"),
        ("rfp-1", None),
    ])
    def test_rejected_before_any_write(self, db_session, rfp_id, decision):
        with pytest.raises(ValidationError):
            committee.decide(db_session, rfp_id, decision, offer_id="offer-1")
        assert db_session.query(CommitteeDecision).count() == 0

    def test_decision_is_case_insensitive(self, db_session):
        outcome = committee.decide(db_session, "rfp-1", "REJECT")
        assert outcome.decision.decision == "reject"

    def test_default_actor_is_committee(self, db_session):
        outcome = committee.decide(db_session, "rfp-1", "reject")
        event = audit_chain(db_session, outcome.correlation_id)[0]
        assert event.actor_role == "committee"
        assert event.actor_user_id is None


class TestCorrelationId:

    def test_valid_caller_value_is_kept(self, db_session):
        outcome = committee.decide(db_session, "rfp-1", "reject", correlation_id=CALLER_CORRELATION_ID)
        assert outcome.correlation_id == CALLER_CORRELATION_ID
        assert outcome.decision.correlation_id == CALLER_CORRELATION_ID

    def test_malformed_value_is_replaced(self, db_session):
        outcome = committee.decide(db_session, "rfp-1", "reject", correlation_id="abc")
        assert outcome.correlation_id != "abc"
        assert is_valid_uuid(outcome.correlation_id)

    def test_repeated_decisions_keep_history(self, db_session):
        committee.decide(db_session, "rfp-1", "reject")
        committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")

        history = committee.list_decisions(db_session, "rfp-1")
        assert sorted(d.decision for d in history) == ["approve", "reject"]
        assert len({d.correlation_id for d in history}) == 2


class TestPartialFailures:

    def test_decision_insert_failure_writes_nothing(self, db_session, fail_on):
        fail_on(CommitteeDecision)
        with pytest.raises(PersistenceError) as exc:
            committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")
        assert exc.value.step == "decision_insert"
        assert db_session.query(CommitteeDecision).count() == 0
        assert db_session.query(AuditEvent).count() == 0

    def test_purchase_order_insert_failure_keeps_decision(self, db_session, fail_on):
        fail_on(PurchaseOrder)
        with pytest.raises(PersistenceError) as exc:
            committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")

        assert exc.value.step == "purchase_order_insert"
        assert exc.value.status_code == 500
        decision = db_session.query(CommitteeDecision).one()
        assert exc.value.details["decision_id"] == decision.decision_id
        assert exc.value.correlation_id == decision.correlation_id
        assert db_session.query(PurchaseOrder).count() == 0

        chain = audit_chain(db_session, decision.correlation_id)
        assert [e.event_type for e in chain] == ["committee_decision_recorded"]

    def test_evidence_insert_failure_leaves_unlinked_order(self, db_session, fail_on):
        fail_on(EvidenceRecord)
        with pytest.raises(PersistenceError) as exc:
            committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")

        assert exc.value.step == "evidence_insert"
        po = db_session.query(PurchaseOrder).one()
        assert po.evidence_id is None
        assert exc.value.details["po_id"] == po.po_id
        assert db_session.query(EvidenceRecord).count() == 0

    def test_link_failure_leaves_orphan_evidence(self, db_session, fail_on):
        fail_on(PurchaseOrder, "before_update")
        with pytest.raises(PersistenceError) as exc:
            committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")

        assert exc.value.step == "purchase_order_evidence_link"
        po = db_session.query(PurchaseOrder).one()
        evidence = db_session.query(EvidenceRecord).one()
        assert po.evidence_id is None
        assert evidence.entity_id == po.po_id
        assert exc.value.details["evidence_id"] == evidence.evidence_id

    def test_audit_failure_does_not_block_decision(self, db_session, fail_on):
        fail_on(AuditEvent)
        outcome = committee.decide(db_session, "rfp-1", "approve", offer_id="offer-1")

        assert outcome.purchase_order is not None
        assert outcome.purchase_order.evidence_id == outcome.evidence.evidence_id
        assert db_session.query(CommitteeDecision).count() == 1
        assert db_session.query(AuditEvent).count() == 0
