"""
SQLAlchemy ORM models for the procurement core.

Identifiers are UUID strings issued by coprocure.core.identity.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, DateTime,
    ForeignKey, Enum, JSON, Index
)
from sqlalchemy.orm import relationship
import enum

from coprocure.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============= ENUMS =============

class DatasetType(str, enum.Enum):
    SHUTDOWNS = "shutdowns"
    NEEDS = "needs"
    SUPPLIERS = "suppliers"


class IngestionStatus(str, enum.Enum):
    RUNNING = "running"
    AWAITING_MAPPING = "awaiting_mapping"
    COMPLETED = "completed"
    ERROR = "error"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    IngestionStatus.COMPLETED,
    IngestionStatus.ERROR,
    IngestionStatus.FAILED,
})


class DecisionType(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class PurchaseOrderStatus(str, enum.Enum):
    CREATED = "created"


# Stored as VARCHAR + CHECK so the same schema runs on Postgres and SQLite.
# Using values_callable-style lists to store enum values (lowercase) not names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


DatasetTypeType = Enum(*enum_values(DatasetType), name='datasettype', native_enum=False)
IngestionStatusType = Enum(*enum_values(IngestionStatus), name='ingestionstatus', native_enum=False)
DecisionTypeType = Enum(*enum_values(DecisionType), name='decisiontype', native_enum=False)
PurchaseOrderStatusType = Enum(*enum_values(PurchaseOrderStatus), name='purchaseorderstatus', native_enum=False)


# ============= INGESTION =============

class IngestionJob(Base):
    """One upload-to-completion lifecycle, processed by the external workflow engine."""
    __tablename__ = "ingestion_jobs"

    job_id = Column(String(36), primary_key=True)
    correlation_id = Column(String(36), nullable=False, index=True)
    upload_id = Column(String(255))
    status = Column(IngestionStatusType, nullable=False, default=IngestionStatus.RUNNING.value, index=True)
    dataset_type = Column(DatasetTypeType, nullable=False)
    company_id = Column(String(64), index=True)
    user_id = Column(String(64))

    # File metadata as confirmed by the client
    file_name = Column(String(500), nullable=False)
    content_type = Column(String(255))
    file_size = Column(Integer)

    # Source columns the engine detected while staging (set on awaiting_mapping)
    detected_columns = Column(JSON)

    rows_total = Column(Integer)
    rows_ok = Column(Integer)
    rows_error = Column(Integer)
    error_message = Column(Text)

    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    ended_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    column_mapping = relationship("ColumnMapping", back_populates="job", uselist=False)

    @property
    def is_terminal(self) -> bool:
        return IngestionStatus(self.status) in TERMINAL_STATUSES


class ColumnMapping(Base):
    """Source column -> target field assignment, one per job."""
    __tablename__ = "column_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("ingestion_jobs.job_id"), nullable=False, unique=True)
    dataset_type = Column(DatasetTypeType, nullable=False)
    mapping = Column(JSON, nullable=False)
    applied_by = Column(String(64))
    applied_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    job = relationship("IngestionJob", back_populates="column_mapping")


# ============= COMMITTEE =============

class CommitteeDecision(Base):
    """A committee verdict on one RFP. Repeated decisions append new rows."""
    __tablename__ = "committee_decisions"

    decision_id = Column(String(36), primary_key=True)
    rfp_id = Column(String(64), nullable=False, index=True)
    offer_id = Column(String(64))
    decision = Column(DecisionTypeType, nullable=False)
    justification = Column(Text)
    decided_by_user_id = Column(String(64))
    correlation_id = Column(String(36), nullable=False, index=True)
    decided_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PurchaseOrder(Base):
    """Created only by an approve decision; evidence_id is back-filled."""
    __tablename__ = "purchase_orders"

    po_id = Column(String(36), primary_key=True)
    rfp_id = Column(String(64), nullable=False, index=True)
    offer_id = Column(String(64), nullable=False)
    decision_id = Column(String(36), ForeignKey("committee_decisions.decision_id"), nullable=False)
    status = Column(PurchaseOrderStatusType, nullable=False, default=PurchaseOrderStatus.CREATED.value)
    po_document_path = Column(String(1000))
    evidence_id = Column(String(36), ForeignKey("evidence_records.evidence_id"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# ============= EVIDENCE & AUDIT =============

class EvidenceRecord(Base):
    """Hash-anchored proof of an entity's content. Insert-only."""
    __tablename__ = "evidence_records"

    evidence_id = Column(String(36), primary_key=True)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(64), nullable=False)
    payload_hash_sha256 = Column(String(64), nullable=False)
    tx_hash = Column(String(128))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_evidence_records_entity', 'entity_type', 'entity_id'),
    )


class AuditEvent(Base):
    """Append-only audit log. ``id`` gives insertion order within a correlation chain."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    correlation_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100))
    entity_id = Column(String(64), index=True)
    summary = Column(Text)
    payload_hash_sha256 = Column(String(64))
    actor_user_id = Column(String(64))
    actor_role = Column(String(50))
    company_id = Column(String(64), index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_audit_events_correlation_created', 'correlation_id', 'created_at'),
    )


from coprocure.db import immutability  # noqa: E402,F401 - registers listeners
