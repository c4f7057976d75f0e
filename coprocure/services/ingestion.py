"""
Ingestion job tracker.

Lifecycle of one upload, processed by the external workflow engine:

    running -> awaiting_mapping -> (mapping applied) -> running -> completed
    running | awaiting_mapping -> completed | error | failed   (finalize)

Terminal states are completed, error and failed; ``ended_at`` is set exactly
when a job enters one. The tracker never waits on the engine: open/confirm
return as soon as the engine acknowledges, and the engine reports back through
``mark_awaiting_mapping`` and ``finalize``. Clients poll ``get_status``; the
"force complete" fallback is just another ``finalize`` call.
"""
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from coprocure.core.errors import (
    ConfigurationError, CoprocureError, NotFoundError, StateError, ValidationError,
)
from coprocure.core.identity import JobReference, clean_identifier, new_correlation_id, new_job_id
from coprocure.core.logging import get_logger
from coprocure.core.rbac import ActorContext
from coprocure.db.models import (
    DatasetType, IngestionJob, IngestionStatus, TERMINAL_STATUSES, utcnow,
)
from coprocure.db.session import commit_or_raise
from coprocure.services.audit import record_audit_event
from coprocure.services.hashing import hash_payload
from coprocure.services.payloads import JobTransitionPayload
from coprocure.services.workflow_engine import UploadTarget, WorkflowEngineClient

logger = get_logger(__name__)

ENGINE_ACTOR = ActorContext(user_id=None, role="workflow_engine")

ALLOWED_TRANSITIONS = {
    IngestionStatus.RUNNING: {
        IngestionStatus.AWAITING_MAPPING,
        IngestionStatus.COMPLETED,
        IngestionStatus.ERROR,
        IngestionStatus.FAILED,
    },
    IngestionStatus.AWAITING_MAPPING: {
        IngestionStatus.RUNNING,
        IngestionStatus.COMPLETED,
        IngestionStatus.ERROR,
        IngestionStatus.FAILED,
    },
}

_FAILURE_STATUSES = {IngestionStatus.ERROR.value, IngestionStatus.FAILED.value}


@dataclass
class FileMetadata:
    file_name: Optional[str]
    content_type: Optional[str]
    file_size: Optional[int] = None


@dataclass
class OpenSessionResult:
    job: IngestionJob
    upload_target: UploadTarget

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def correlation_id(self) -> str:
        return self.job.correlation_id


@dataclass
class FinalizeResult:
    job: IngestionJob
    already_terminal: bool


def parse_dataset_type(value: Optional[str]) -> DatasetType:
    try:
        return DatasetType((value or "").strip().lower())
    except ValueError:
        accepted = ", ".join(t.value for t in DatasetType)
        raise ValidationError(
            f'Invalid dataset_type "{value}". Accepted values: {accepted}',
            details={"accepted": [t.value for t in DatasetType]},
        )


def transition_job(job: IngestionJob, target: IngestionStatus) -> IngestionStatus:
    current = IngestionStatus(job.status)
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise StateError(
            f"Job {job.job_id} cannot move from {current.value} to {target.value}",
            correlation_id=job.correlation_id,
            details={"job_id": job.job_id, "status": current.value},
        )
    job.status = target.value
    if target in TERMINAL_STATUSES:
        job.ended_at = utcnow()
    return current


def audit_job_event(
    db: Session,
    job: IngestionJob,
    event_type: str,
    summary: str,
    actor: ActorContext,
    from_status: Optional[str] = None,
    **extra,
) -> None:
    payload = JobTransitionPayload(
        job_id=job.job_id,
        dataset_type=job.dataset_type,
        from_status=from_status,
        to_status=job.status,
        upload_id=job.upload_id,
        rows_total=job.rows_total,
        rows_ok=job.rows_ok,
        rows_error=job.rows_error,
        **extra,
    )
    if actor.company_id is None and job.company_id:
        actor = ActorContext(user_id=actor.user_id, role=actor.role, company_id=job.company_id)
    record_audit_event(
        db,
        correlation_id=job.correlation_id,
        event_type=event_type,
        entity_type="ingestion_job",
        entity_id=job.job_id,
        summary=summary,
        payload_hash=hash_payload(payload),
        actor=actor,
    )


# ============= LOOKUPS =============

def get_status(db: Session, job_id: str) -> IngestionJob:
    job = db.query(IngestionJob).filter(IngestionJob.job_id == job_id).first()
    if not job:
        raise NotFoundError(f"Ingestion job {job_id} not found", details={"job_id": job_id})
    return job


def find_job(db: Session, ref: JobReference) -> IngestionJob:
    """Resolve by job_id first; fall back to the most recently started job for the correlation_id."""
    if ref.is_empty:
        raise ValidationError("job_id or correlation_id is required")

    job = None
    if ref.job_id:
        job = db.query(IngestionJob).filter(IngestionJob.job_id == ref.job_id).first()
    if job is None and ref.correlation_id:
        job = (
            db.query(IngestionJob)
            .filter(IngestionJob.correlation_id == ref.correlation_id)
            .order_by(desc(IngestionJob.started_at))
            .first()
        )
    if job is None:
        raise NotFoundError(
            "Ingestion job not found",
            correlation_id=ref.correlation_id,
            details={"job_id": ref.job_id, "correlation_id": ref.correlation_id},
        )
    return job


def detected_columns(db: Session, job_id: str) -> List[str]:
    """Source columns reported by the engine; empty until the job reaches awaiting_mapping."""
    return list(get_status(db, job_id).detected_columns or [])


def list_recent_jobs(
    db: Session,
    limit: int = 50,
    company_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[IngestionJob]:
    query = db.query(IngestionJob)
    if company_id:
        query = query.filter(IngestionJob.company_id == company_id)
    if status:
        query = query.filter(IngestionJob.status == status)
    return query.order_by(desc(IngestionJob.started_at)).limit(limit).all()


# ============= CLIENT OPERATIONS =============

async def open_session(
    db: Session,
    dataset_type: Optional[str],
    file_metadata: FileMetadata,
    company_id: Optional[str],
    actor: ActorContext,
    engine: WorkflowEngineClient,
) -> OpenSessionResult:
    """
    Register a new job as running and obtain its upload target from the engine.

    If the engine cannot be reached the job is finalized as failed before the
    error is re-raised, so it never lingers as running.
    """
    dataset = parse_dataset_type(dataset_type)

    missing = [
        name for name, value in (
            ("file_name", file_metadata.file_name),
            ("content_type", file_metadata.content_type),
            ("company_id", company_id),
        )
        if not (value and str(value).strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )
    if file_metadata.file_size is not None and file_metadata.file_size < 0:
        raise ValidationError("file_size must be non-negative")

    if not engine.base_url:
        raise ConfigurationError("Workflow engine is not configured: set WORKFLOW_ENGINE_BASE_URL")

    job = IngestionJob(
        job_id=new_job_id(),
        correlation_id=new_correlation_id(),
        status=IngestionStatus.RUNNING.value,
        dataset_type=dataset.value,
        company_id=str(company_id).strip(),
        user_id=actor.user_id,
        file_name=file_metadata.file_name.strip(),
        content_type=file_metadata.content_type.strip(),
        file_size=file_metadata.file_size,
        started_at=utcnow(),
    )
    db.add(job)
    commit_or_raise(db, "ingestion_job_insert", correlation_id=job.correlation_id, job_id=job.job_id)

    logger.info(
        f"Ingestion session opened for {dataset.value}: {job.file_name}",
        extra={"correlation_id": job.correlation_id, "job_id": job.job_id},
    )

    try:
        target = await engine.open_session({
            "company_id": job.company_id,
            "user_id": job.user_id,
            "file_name": job.file_name,
            "file_type": job.content_type,
            "dataset_type": job.dataset_type,
            "job_id": job.job_id,
            "correlation_id": job.correlation_id,
        })
    except CoprocureError as e:
        e.correlation_id = e.correlation_id or job.correlation_id
        from_status = transition_job(job, IngestionStatus.FAILED)
        job.error_message = e.message
        commit_or_raise(db, "ingestion_job_fail", correlation_id=job.correlation_id, job_id=job.job_id)
        audit_job_event(
            db, job, "ingestion_session_failed",
            f"Upload session could not be opened: {e.message}",
            actor, from_status=from_status.value,
        )
        raise

    audit_job_event(db, job, "ingestion_session_opened", f"Upload session opened for {job.dataset_type}", actor)
    return OpenSessionResult(job=job, upload_target=target)


async def confirm_upload(
    db: Session,
    job_id: Optional[str],
    correlation_id: Optional[str],
    upload_id: Optional[str],
    actor: ActorContext,
    engine: WorkflowEngineClient,
) -> IngestionJob:
    """Confirm the file reached storage and hand the job to the engine."""
    job_id = clean_identifier(job_id)
    correlation_id = clean_identifier(correlation_id)
    upload_id = clean_identifier(upload_id)
    if not job_id or not correlation_id:
        raise ValidationError(
            "job_id and correlation_id are required to confirm an upload",
            correlation_id=correlation_id,
        )

    job = get_status(db, job_id)
    if job.correlation_id != correlation_id:
        raise ValidationError(
            "correlation_id does not belong to this job",
            correlation_id=correlation_id,
            details={"job_id": job_id},
        )
    if job.is_terminal:
        raise StateError(
            f"Job {job_id} is already {job.status}",
            correlation_id=job.correlation_id,
            details={"job_id": job_id, "status": job.status},
        )
    if upload_id and job.upload_id:
        if job.upload_id != upload_id:
            raise StateError(
                f"Job {job_id} already has upload {job.upload_id}",
                correlation_id=job.correlation_id,
                details={"job_id": job_id, "upload_id": job.upload_id},
            )
        logger.info(
            f"Upload {upload_id} already confirmed for job {job_id}",
            extra={"correlation_id": job.correlation_id, "job_id": job.job_id},
        )
        return job

    await engine.confirm_upload(job.job_id, job.correlation_id, upload_id or job.upload_id)

    if upload_id and not job.upload_id:
        job.upload_id = upload_id
        commit_or_raise(db, "ingestion_job_confirm", correlation_id=job.correlation_id, job_id=job.job_id)

    audit_job_event(db, job, "ingestion_upload_confirmed", "Upload confirmed", actor)
    return job


# ============= ENGINE CALLBACKS =============

def _coerce_count(name: str, value) -> Optional[int]:
    if value is None:
        return None
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{name} must be an integer", details={name: value})
    if count < 0:
        raise ValidationError(f"{name} must be non-negative", details={name: count})
    return count


def _apply_row_counts(job: IngestionJob, rows_total=None, rows_ok=None, rows_error=None) -> None:
    """Copy supplied counts; counts never decrease and ok + error never exceeds total."""
    updates = {
        "rows_total": _coerce_count("rows_total", rows_total),
        "rows_ok": _coerce_count("rows_ok", rows_ok),
        "rows_error": _coerce_count("rows_error", rows_error),
    }
    merged = {}
    for name, value in updates.items():
        current = getattr(job, name)
        if value is not None and current is not None and value < current:
            raise ValidationError(
                f"{name} cannot decrease from {current} to {value}",
                correlation_id=job.correlation_id,
                details={"job_id": job.job_id, name: value},
            )
        merged[name] = value if value is not None else current

    if None not in merged.values() and merged["rows_ok"] + merged["rows_error"] > merged["rows_total"]:
        raise ValidationError(
            "rows_ok + rows_error cannot exceed rows_total",
            correlation_id=job.correlation_id,
            details=merged,
        )
    for name, value in merged.items():
        setattr(job, name, value)


def normalize_column_names(columns: Iterable[str]) -> List[str]:
    """Trim, strip accents, de-duplicate and sort detected source column names."""
    seen = set()
    for column in columns:
        if column is None:
            continue
        decomposed = unicodedata.normalize("NFD", str(column).strip())
        name = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
        if name:
            seen.add(name)
    return sorted(seen)


def mark_awaiting_mapping(
    db: Session,
    ref: JobReference,
    source_columns: Iterable[str],
    rows_total=None,
) -> IngestionJob:
    """Engine progress callback: staging done, the job needs a column mapping."""
    job = find_job(db, ref)
    if job.is_terminal:
        raise StateError(
            f"Job {job.job_id} is already {job.status}",
            correlation_id=job.correlation_id,
            details={"job_id": job.job_id, "status": job.status},
        )

    columns = normalize_column_names(source_columns or [])
    # Rejected counts must leave the job untouched
    _apply_row_counts(job, rows_total=rows_total)
    from_status = IngestionStatus(job.status)
    if from_status != IngestionStatus.AWAITING_MAPPING:
        transition_job(job, IngestionStatus.AWAITING_MAPPING)
    job.detected_columns = columns
    commit_or_raise(db, "ingestion_job_awaiting_mapping", correlation_id=job.correlation_id, job_id=job.job_id)

    audit_job_event(
        db, job, "ingestion_awaiting_mapping",
        f"{len(columns)} source columns detected; mapping required",
        ENGINE_ACTOR, from_status=from_status.value, source_columns=columns,
    )
    return job


def finalize(
    db: Session,
    ref: JobReference,
    status: Optional[str] = None,
    rows_total=None,
    rows_ok=None,
    rows_error=None,
    error_message: Optional[str] = None,
    actor: ActorContext = ENGINE_ACTOR,
    forced: bool = False,
) -> FinalizeResult:
    """
    Move a job to its terminal state. Idempotent.

    Status is ``completed`` unless the caller explicitly sends ``error`` or
    ``failed``. A job that is already terminal is returned untouched.
    """
    job = find_job(db, ref)

    if job.is_terminal:
        logger.info(
            f"Job {job.job_id} already {job.status}; finalize ignored",
            extra={"correlation_id": job.correlation_id, "job_id": job.job_id},
        )
        return FinalizeResult(job=job, already_terminal=True)

    normalized = (status or "").strip().lower()
    target = IngestionStatus(normalized) if normalized in _FAILURE_STATUSES else IngestionStatus.COMPLETED

    _apply_row_counts(job, rows_total, rows_ok, rows_error)
    from_status = transition_job(job, target)
    if error_message and target != IngestionStatus.COMPLETED:
        job.error_message = error_message
    commit_or_raise(db, "ingestion_job_finalize", correlation_id=job.correlation_id, job_id=job.job_id)

    logger.info(
        f"Job {job.job_id} -> {job.status}{' (forced)' if forced else ''}",
        extra={"correlation_id": job.correlation_id, "job_id": job.job_id},
    )
    audit_job_event(
        db, job,
        "ingestion_job_force_completed" if forced else "ingestion_job_finalized",
        f"Ingestion job {'force-' if forced else ''}finalized as {job.status}",
        actor, from_status=from_status.value,
    )
    return FinalizeResult(job=job, already_terminal=False)


def force_complete(db: Session, job_id: str, actor: ActorContext) -> FinalizeResult:
    """Client fallback for jobs whose engine callback never arrived."""
    return finalize(
        db,
        JobReference(job_id=job_id),
        status=IngestionStatus.COMPLETED.value,
        actor=actor,
        forced=True,
    )
