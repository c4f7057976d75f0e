"""
Typed shapes of every payload that gets hashed into evidence or audit events.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class DecisionPayload(BaseModel):
    """Hashed into ``committee_decision_recorded``."""
    rfp_id: str
    offer_id: Optional[str] = None
    decision: str
    justification: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: datetime


class DecisionSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    decision_id: str
    rfp_id: str
    offer_id: Optional[str] = None
    decision: str
    justification: Optional[str] = None
    decided_by_user_id: Optional[str] = None
    correlation_id: str
    decided_at: datetime


class PurchaseOrderSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    po_id: str
    rfp_id: str
    offer_id: str
    decision_id: str
    status: str
    po_document_path: Optional[str] = None
    evidence_id: Optional[str] = None
    created_at: datetime


class PurchaseOrderEvidencePayload(BaseModel):
    """Hashed into the purchase order's evidence record (PO as inserted, before evidence_id)."""
    decision: DecisionSnapshot
    purchase_order: PurchaseOrderSnapshot


class JobTransitionPayload(BaseModel):
    """Hashed into ingestion lifecycle audit events."""
    job_id: str
    dataset_type: str
    from_status: Optional[str] = None
    to_status: str
    upload_id: Optional[str] = None
    rows_total: Optional[int] = None
    rows_ok: Optional[int] = None
    rows_error: Optional[int] = None
    mapping: Optional[Dict[str, str]] = None
    source_columns: Optional[List[str]] = None
