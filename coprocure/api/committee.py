"""
Committee API - record award decisions on RFPs.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coprocure.core.rbac import ActorContext, require_committee, require_viewer
from coprocure.db.session import get_db
from coprocure.services import committee as committee_service

router = APIRouter(prefix="/api/committee", tags=["Committee"])


# ============= SCHEMAS =============

class DecisionRequest(BaseModel):
    rfp_id: str
    decision: str
    offer_id: Optional[str] = None
    justification: Optional[str] = None
    correlation_id: Optional[str] = None


class DecisionResponse(BaseModel):
    decision_id: str
    rfp_id: str
    offer_id: Optional[str]
    decision: str
    justification: Optional[str]
    decided_by_user_id: Optional[str]
    correlation_id: str
    decided_at: datetime

    class Config:
        from_attributes = True


class PurchaseOrderResponse(BaseModel):
    po_id: str
    rfp_id: str
    offer_id: str
    decision_id: str
    status: str
    po_document_path: Optional[str]
    evidence_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class DecisionOutcomeResponse(BaseModel):
    ok: bool = True
    correlation_id: str
    decision: DecisionResponse
    purchase_order: Optional[PurchaseOrderResponse] = None
    evidence_hash: Optional[str] = None


# ============= ROUTES =============

@router.post("/decisions", response_model=DecisionOutcomeResponse, status_code=201)
async def record_decision(
    request: DecisionRequest,
    actor: ActorContext = Depends(require_committee),
    db: Session = Depends(get_db)
):
    """Approve or reject an RFP. Approval creates the purchase order and its evidence."""
    outcome = committee_service.decide(
        db,
        rfp_id=request.rfp_id,
        decision=request.decision,
        offer_id=request.offer_id,
        justification=request.justification,
        actor=actor,
        correlation_id=request.correlation_id,
    )
    return DecisionOutcomeResponse(
        correlation_id=outcome.correlation_id,
        decision=DecisionResponse.model_validate(outcome.decision),
        purchase_order=(
            PurchaseOrderResponse.model_validate(outcome.purchase_order)
            if outcome.purchase_order else None
        ),
        evidence_hash=outcome.evidence.payload_hash_sha256 if outcome.evidence else None,
    )


@router.get("/decisions", response_model=List[DecisionResponse])
async def list_decisions(
    rfp_id: str = Query(..., description="RFP whose decision history to list"),
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Every decision recorded for the RFP, newest first."""
    return [DecisionResponse.model_validate(d) for d in committee_service.list_decisions(db, rfp_id)]
