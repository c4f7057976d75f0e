"""
Tests for evidence and audit recording: append-only guarantees, query
filters and best-effort audit writes.
"""
import pytest

from coprocure.core.config import settings
from coprocure.core.errors import ImmutableRecordError, NotFoundError, PersistenceError, ValidationError
from coprocure.core.rbac import ActorContext
from coprocure.db.models import AuditEvent, EvidenceRecord
from coprocure.services import audit
from coprocure.services.hashing import hash_payload

CORRELATION_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def _append(db, n, correlation_id=CORRELATION_ID, company_id="acme", entity_id="rfp-1"):
    return [
        audit.record_audit_event(
            db,
            correlation_id=correlation_id,
            event_type=f"step_{i}",
            entity_type="rfp",
            entity_id=entity_id,
            summary=f"step {i}",
            payload_hash=hash_payload({"i": i}),
            actor=ActorContext(user_id="user-1", role="committee", company_id=company_id),
        )
        for i in range(n)
    ]


class TestRecordEvidence:

    def test_stores_payload_digest(self, db_session):
        payload = {"po_id": "po-1", "amount": 100}
        evidence = audit.record_evidence(db_session, "purchase_order", "po-1", payload)
        assert evidence.payload_hash_sha256 == hash_payload(payload)
        assert evidence.tx_hash is None
        assert evidence.created_at is not None

    def test_failure_raises_with_step(self, db_session, fail_on):
        fail_on(EvidenceRecord)
        with pytest.raises(PersistenceError) as exc:
            audit.record_evidence(db_session, "purchase_order", "po-1", {"a": 1}, correlation_id=CORRELATION_ID)
        assert exc.value.step == "evidence_insert"
        assert exc.value.details["entity_id"] == "po-1"

    def test_evidence_cannot_be_updated(self, db_session):
        evidence = audit.record_evidence(db_session, "purchase_order", "po-1", {"a": 1})
        evidence.payload_hash_sha256 = "0" * 64
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()

    def test_evidence_cannot_be_deleted(self, db_session):
        evidence = audit.record_evidence(db_session, "purchase_order", "po-1", {"a": 1})
        db_session.delete(evidence)
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(EvidenceRecord).count() == 1


class TestRecordAuditEvent:

    def test_copies_actor(self, db_session):
        event = _append(db_session, 1)[0]
        assert event.actor_user_id == "user-1"
        assert event.actor_role == "committee"
        assert event.company_id == "acme"

    def test_failure_returns_none_and_keeps_session_usable(self, db_session, fail_on):
        fail_on(AuditEvent)
        assert _append(db_session, 1) == [None]
        assert db_session.query(AuditEvent).count() == 0

    def test_events_cannot_be_updated(self, db_session):
        event = _append(db_session, 1)[0]
        event.summary = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db_session.commit()
        db_session.rollback()


class TestQueries:

    def test_chain_is_oldest_first(self, db_session):
        _append(db_session, 3)
        _append(db_session, 2, correlation_id="another")
        chain = audit.audit_chain(db_session, CORRELATION_ID)
        assert [e.event_type for e in chain] == ["step_0", "step_1", "step_2"]

    def test_chain_requires_correlation_id(self, db_session):
        with pytest.raises(ValidationError):
            audit.audit_chain(db_session, "")

    def test_list_is_newest_first(self, db_session):
        _append(db_session, 3)
        events = audit.list_audit_events(db_session, correlation_id=CORRELATION_ID)
        assert [e.event_type for e in events] == ["step_2", "step_1", "step_0"]

    def test_default_limit_only_without_filters(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "AUDIT_DEFAULT_LIMIT", 3)
        _append(db_session, 5)
        assert len(audit.list_audit_events(db_session)) == 3
        assert len(audit.list_audit_events(db_session, correlation_id=CORRELATION_ID)) == 5
        assert len(audit.list_audit_events(db_session, limit=4)) == 4

    def test_filters(self, db_session):
        _append(db_session, 2, company_id="acme", entity_id="rfp-1")
        _append(db_session, 1, company_id="globex", entity_id="rfp-2")
        assert len(audit.list_audit_events(db_session, company_id="globex")) == 1
        assert len(audit.list_audit_events(db_session, entity_id="rfp-1")) == 2
        assert len(audit.list_audit_events(db_session, entity_type="rfp")) == 3

    def test_evidence_for_entity(self, db_session):
        audit.record_evidence(db_session, "purchase_order", "po-1", {"a": 1})
        audit.record_evidence(db_session, "purchase_order", "po-2", {"a": 2})
        records = audit.evidence_for_entity(db_session, "purchase_order", "po-1")
        assert [r.entity_id for r in records] == ["po-1"]

    def test_evidence_lookup_requires_both_keys(self, db_session):
        with pytest.raises(ValidationError):
            audit.evidence_for_entity(db_session, "purchase_order", None)


class TestVerifyEvidence:

    def test_matching_and_tampered_payloads(self, db_session):
        payload = {"po_id": "po-1", "offer_id": "offer-1"}
        evidence = audit.record_evidence(db_session, "purchase_order", "po-1", payload)

        assert audit.verify_evidence(db_session, evidence.evidence_id, dict(reversed(list(payload.items()))))["matches"]

        tampered = audit.verify_evidence(db_session, evidence.evidence_id, dict(payload, offer_id="offer-2"))
        assert tampered["matches"] is False
        assert tampered["stored_hash"] == evidence.payload_hash_sha256

    def test_unknown_evidence(self, db_session):
        with pytest.raises(NotFoundError):
            audit.verify_evidence(db_session, "missing", {})
