"""
Audit API - append-only event log and evidence records.
"""
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coprocure.core.rbac import ActorContext, require_viewer
from coprocure.db.session import get_db
from coprocure.services import audit as audit_service

router = APIRouter(prefix="/api/audit", tags=["Audit"])


# ============= SCHEMAS =============

class AuditEventResponse(BaseModel):
    event_id: str
    correlation_id: str
    event_type: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    summary: Optional[str]
    payload_hash_sha256: Optional[str]
    actor_user_id: Optional[str]
    actor_role: Optional[str]
    company_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class EvidenceResponse(BaseModel):
    evidence_id: str
    entity_type: str
    entity_id: str
    payload_hash_sha256: str
    tx_hash: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class VerificationResponse(BaseModel):
    evidence_id: str
    entity_type: str
    entity_id: str
    stored_hash: str
    computed_hash: str
    matches: bool


# ============= ROUTES =============

@router.get("/events", response_model=List[AuditEventResponse])
async def list_audit_events(
    correlation_id: Optional[str] = Query(None, description="Filter by workflow run"),
    entity_id: Optional[str] = Query(None, description="Filter by entity"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    company_id: Optional[str] = Query(None, description="Filter by company"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Newest first. Unfiltered requests return the most recent events only."""
    events = audit_service.list_audit_events(
        db,
        correlation_id=correlation_id,
        entity_id=entity_id,
        entity_type=entity_type,
        company_id=company_id,
        limit=limit,
    )
    return [AuditEventResponse.model_validate(e) for e in events]


@router.get("/chain/{correlation_id}", response_model=List[AuditEventResponse])
async def get_audit_chain(
    correlation_id: str,
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Every event of one workflow run, oldest first."""
    return [AuditEventResponse.model_validate(e) for e in audit_service.audit_chain(db, correlation_id)]


@router.get("/evidence", response_model=List[EvidenceResponse])
async def get_entity_evidence(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    records = audit_service.evidence_for_entity(db, entity_type, entity_id)
    return [EvidenceResponse.model_validate(r) for r in records]


@router.post("/evidence/{evidence_id}/verify", response_model=VerificationResponse)
async def verify_evidence(
    evidence_id: str,
    payload: Any = Body(...),
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Recompute the digest of the submitted payload and compare it with the stored hash."""
    return VerificationResponse(**audit_service.verify_evidence(db, evidence_id, payload))
