"""
Ingestion API - upload sessions, job status polling and column mapping.

Client flow:
1. POST /sessions -> job_id, correlation_id, signed_url (job is running)
2. client uploads the file to signed_url
3. POST /jobs/{job_id}/confirm -> engine starts processing
4. poll GET /jobs/{job_id} every poll_interval_seconds
5. awaiting_mapping -> GET /jobs/{job_id}/columns, POST /jobs/{job_id}/mapping
6. engine calls POST /finalize -> completed | error | failed

The engine's callbacks (/progress, /finalize) authenticate with the workflow
callback token, not a user JWT.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coprocure.core.config import settings
from coprocure.core.identity import normalize_job_reference
from coprocure.core.rbac import ActorContext, require_operator, require_viewer
from coprocure.core.security import verify_callback_token
from coprocure.db.models import IngestionJob
from coprocure.db.session import get_db
from coprocure.services import ingestion as ingestion_service
from coprocure.services import mapping as mapping_service
from coprocure.services.workflow_engine import WorkflowEngineClient, get_workflow_engine

router = APIRouter(prefix="/api/ingestion", tags=["Ingestion"])


# ============= SCHEMAS =============

class SessionRequest(BaseModel):
    dataset_type: str
    file_name: str
    content_type: str
    file_size: Optional[int] = None
    company_id: Optional[str] = None


class SessionResponse(BaseModel):
    ok: bool = True
    job_id: str
    correlation_id: str
    status: str
    signed_url: str


class ConfirmRequest(BaseModel):
    correlation_id: Optional[str] = None
    upload_id: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    correlation_id: str
    upload_id: Optional[str]
    status: str
    dataset_type: str
    company_id: Optional[str]
    file_name: str
    rows_total: Optional[int]
    rows_ok: Optional[int]
    rows_error: Optional[int]
    error_message: Optional[str]
    started_at: datetime
    ended_at: Optional[datetime]
    is_terminal: bool
    poll_interval_seconds: int

    class Config:
        from_attributes = True


class FinalizeResponse(BaseModel):
    ok: bool = True
    job_id: str
    correlation_id: str
    status: str
    already_terminal: bool


class ColumnsResponse(BaseModel):
    job_id: str
    dataset_type: str
    status: str
    columns: List[str]


class TargetField(BaseModel):
    name: str
    required: bool


class FieldsResponse(BaseModel):
    dataset_type: str
    fields: List[TargetField]


class MappingRequest(BaseModel):
    # source column -> target field; null or blank leaves the column unmapped
    mapping: Dict[str, Optional[str]]


class MappingValidationResponse(BaseModel):
    valid: bool
    missing: List[str]
    unknown_targets: List[str]


def _job_response(job: IngestionJob) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.job_id,
        correlation_id=job.correlation_id,
        upload_id=job.upload_id,
        status=job.status,
        dataset_type=job.dataset_type,
        company_id=job.company_id,
        file_name=job.file_name,
        rows_total=job.rows_total,
        rows_ok=job.rows_ok,
        rows_error=job.rows_error,
        error_message=job.error_message,
        started_at=job.started_at,
        ended_at=job.ended_at,
        is_terminal=job.is_terminal,
        poll_interval_seconds=settings.STATUS_POLL_INTERVAL_SECONDS,
    )


# ============= CLIENT ROUTES =============

@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def open_upload_session(
    request: SessionRequest,
    actor: ActorContext = Depends(require_operator),
    engine: WorkflowEngineClient = Depends(get_workflow_engine),
    db: Session = Depends(get_db)
):
    """Register a new ingestion job and return the signed upload URL."""
    result = await ingestion_service.open_session(
        db,
        dataset_type=request.dataset_type,
        file_metadata=ingestion_service.FileMetadata(
            file_name=request.file_name,
            content_type=request.content_type,
            file_size=request.file_size,
        ),
        company_id=request.company_id or actor.company_id,
        actor=actor,
        engine=engine,
    )
    return SessionResponse(
        job_id=result.job_id,
        correlation_id=result.correlation_id,
        status=result.job.status,
        signed_url=result.upload_target.signed_url,
    )


@router.post("/jobs/{job_id}/confirm", response_model=JobStatusResponse)
async def confirm_upload(
    job_id: str,
    request: ConfirmRequest,
    actor: ActorContext = Depends(require_operator),
    engine: WorkflowEngineClient = Depends(get_workflow_engine),
    db: Session = Depends(get_db)
):
    """Tell the engine the file is in storage and processing can start."""
    job = await ingestion_service.confirm_upload(
        db,
        job_id=job_id,
        correlation_id=request.correlation_id,
        upload_id=request.upload_id,
        actor=actor,
        engine=engine,
    )
    return _job_response(job)


@router.get("/jobs", response_model=List[JobStatusResponse])
async def list_jobs(
    company_id: Optional[str] = Query(None, description="Filter by company"),
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Most recently started jobs first."""
    jobs = ingestion_service.list_recent_jobs(db, limit=limit, company_id=company_id, status=status)
    return [_job_response(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Polling endpoint. Stop polling once is_terminal is true."""
    return _job_response(ingestion_service.get_status(db, job_id))


@router.post("/jobs/{job_id}/force-complete", response_model=FinalizeResponse)
async def force_complete_job(
    job_id: str,
    actor: ActorContext = Depends(require_operator),
    db: Session = Depends(get_db)
):
    """Fallback when the engine finished but its callback never arrived."""
    result = ingestion_service.force_complete(db, job_id, actor=actor)
    return FinalizeResponse(
        job_id=result.job.job_id,
        correlation_id=result.job.correlation_id,
        status=result.job.status,
        already_terminal=result.already_terminal,
    )


@router.get("/jobs/{job_id}/columns", response_model=ColumnsResponse)
async def get_detected_columns(
    job_id: str,
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    job = ingestion_service.get_status(db, job_id)
    return ColumnsResponse(
        job_id=job.job_id,
        dataset_type=job.dataset_type,
        status=job.status,
        columns=ingestion_service.detected_columns(db, job_id),
    )


@router.get("/fields/{dataset_type}", response_model=FieldsResponse)
async def get_target_fields(
    dataset_type: str,
    actor: ActorContext = Depends(require_viewer)
):
    fields = mapping_service.target_fields(dataset_type)
    return FieldsResponse(
        dataset_type=dataset_type.strip().lower(),
        fields=[TargetField(**f) for f in fields],
    )


@router.post("/jobs/{job_id}/mapping/validate", response_model=MappingValidationResponse)
async def validate_job_mapping(
    job_id: str,
    request: MappingRequest,
    actor: ActorContext = Depends(require_viewer),
    db: Session = Depends(get_db)
):
    """Dry-run validation; nothing is stored."""
    job = ingestion_service.get_status(db, job_id)
    result = mapping_service.validate_mapping(request.mapping, job.dataset_type)
    return MappingValidationResponse(
        valid=result.valid,
        missing=sorted(result.missing),
        unknown_targets=sorted(result.unknown_targets),
    )


@router.post("/jobs/{job_id}/mapping", response_model=JobStatusResponse)
async def apply_job_mapping(
    job_id: str,
    request: MappingRequest,
    actor: ActorContext = Depends(require_operator),
    engine: WorkflowEngineClient = Depends(get_workflow_engine),
    db: Session = Depends(get_db)
):
    job = await mapping_service.apply_mapping(db, job_id, request.mapping, actor=actor, engine=engine)
    return _job_response(job)


# ============= ENGINE CALLBACKS =============

@router.post("/progress", response_model=JobStatusResponse, dependencies=[Depends(verify_callback_token)])
async def report_progress(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db)
):
    """Engine callback: staging finished and the job needs a column mapping."""
    columns = payload.get("source_columns")
    if columns is None:
        columns = payload.get("columns") or []
    job = ingestion_service.mark_awaiting_mapping(
        db,
        normalize_job_reference(payload),
        source_columns=columns,
        rows_total=payload.get("rows_total"),
    )
    return _job_response(job)


@router.post("/finalize", response_model=FinalizeResponse, dependencies=[Depends(verify_callback_token)])
async def finalize_job(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db)
):
    """Engine callback: processing ended. Safe to call more than once."""
    result = ingestion_service.finalize(
        db,
        normalize_job_reference(payload),
        status=payload.get("status"),
        rows_total=payload.get("rows_total"),
        rows_ok=payload.get("rows_ok"),
        rows_error=payload.get("rows_error"),
        error_message=payload.get("error_message"),
    )
    return FinalizeResponse(
        job_id=result.job.job_id,
        correlation_id=result.job.correlation_id,
        status=result.job.status,
        already_terminal=result.already_terminal,
    )
