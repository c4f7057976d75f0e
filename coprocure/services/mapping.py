"""
Column mapping validation and dispatch.

A mapping assigns detected source columns to the target fields of a dataset
type: ``{source column: target field}``. It is valid when every required
target field appears among the mapping's values. Source columns left unmapped
(null or blank target) are dropped; targets outside the known field list are
reported but do not invalidate it.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set

from sqlalchemy.orm import Session

from coprocure.core.errors import MissingFieldsError, StateError, ValidationError
from coprocure.core.logging import get_logger
from coprocure.core.rbac import ActorContext
from coprocure.db.models import ColumnMapping, DatasetType, IngestionStatus, utcnow
from coprocure.db.session import commit_or_raise
from coprocure.services.ingestion import audit_job_event, get_status, parse_dataset_type, transition_job
from coprocure.services.workflow_engine import WorkflowEngineClient

logger = get_logger(__name__)

TARGET_FIELDS: Dict[DatasetType, List[str]] = {
    DatasetType.SHUTDOWNS: [
        "company_id", "site_id", "asset_area", "start_date", "end_date", "criticality",
    ],
    DatasetType.NEEDS: [
        "company_id", "site_id", "shutdown_id", "item_name", "item_category", "specs",
        "quantity", "uom", "required_by_date", "lead_time_days",
    ],
    DatasetType.SUPPLIERS: [
        "supplier_name", "country", "is_national", "categories_json", "coverage_json",
        "verification_status", "quality_score", "sla_score",
    ],
}

REQUIRED_FIELDS: Dict[DatasetType, Set[str]] = {
    DatasetType.SHUTDOWNS: {"company_id", "start_date", "end_date"},
    DatasetType.NEEDS: {"company_id", "item_name", "item_category", "quantity"},
    DatasetType.SUPPLIERS: {"supplier_name"},
}


@dataclass
class MappingValidation:
    valid: bool
    missing: Set[str] = field(default_factory=set)
    unknown_targets: Set[str] = field(default_factory=set)
    mapping: Dict[str, str] = field(default_factory=dict)


def required_fields(dataset_type) -> Set[str]:
    return set(REQUIRED_FIELDS[parse_dataset_type(dataset_type)])


def target_fields(dataset_type) -> List[Dict[str, object]]:
    """Target fields of a dataset type, flagged required or optional, in display order."""
    dataset = parse_dataset_type(dataset_type)
    required = REQUIRED_FIELDS[dataset]
    return [{"name": name, "required": name in required} for name in TARGET_FIELDS[dataset]]


def clean_mapping(mapping: Optional[Mapping[str, Optional[str]]]) -> Dict[str, str]:
    """Drop source columns whose target field is null or blank."""
    if mapping is None:
        return {}
    if not isinstance(mapping, Mapping):
        raise ValidationError("mapping must be an object of source column -> target field")
    cleaned = {}
    for source, target in mapping.items():
        if target is None:
            continue
        target = str(target).strip()
        if target:
            cleaned[str(source).strip()] = target
    return cleaned


def validate_mapping(mapping: Optional[Mapping[str, Optional[str]]], dataset_type) -> MappingValidation:
    dataset = parse_dataset_type(dataset_type)
    cleaned = clean_mapping(mapping)
    assigned = set(cleaned.values())
    return MappingValidation(
        valid=REQUIRED_FIELDS[dataset] <= assigned,
        missing=REQUIRED_FIELDS[dataset] - assigned,
        unknown_targets=assigned - set(TARGET_FIELDS[dataset]),
        mapping=cleaned,
    )


async def apply_mapping(
    db: Session,
    job_id: str,
    mapping: Optional[Mapping[str, Optional[str]]],
    actor: ActorContext,
    engine: WorkflowEngineClient,
):
    """
    Validate a mapping against the job's dataset type, dispatch it to the
    engine and resume the job.

    Nothing is stored when validation or dispatch fails, so the job stays in
    awaiting_mapping and the mapping can be corrected and re-applied.
    """
    job = get_status(db, job_id)
    if job.status != IngestionStatus.AWAITING_MAPPING.value:
        raise StateError(
            f"Job {job_id} is {job.status}; a mapping can only be applied while awaiting_mapping",
            correlation_id=job.correlation_id,
            details={"job_id": job_id, "status": job.status},
        )

    result = validate_mapping(mapping, job.dataset_type)
    if not result.valid:
        raise MissingFieldsError(result.missing, job.dataset_type, correlation_id=job.correlation_id)
    if result.unknown_targets:
        logger.warning(
            f"Mapping for job {job_id} has unknown targets: {sorted(result.unknown_targets)}",
            extra={"correlation_id": job.correlation_id, "job_id": job_id},
        )

    await engine.apply_mapping(job.job_id, result.mapping, job.correlation_id)

    # The engine may already have finalized the job while we were dispatching
    db.refresh(job, attribute_names=["status"])
    from_status = job.status
    if job.status == IngestionStatus.AWAITING_MAPPING.value:
        transition_job(job, IngestionStatus.RUNNING)

    record = job.column_mapping
    if record is None:
        record = ColumnMapping(job_id=job.job_id, dataset_type=job.dataset_type)
        db.add(record)
    record.mapping = result.mapping
    record.applied_by = actor.user_id
    record.applied_at = utcnow()
    commit_or_raise(db, "column_mapping_apply", correlation_id=job.correlation_id, job_id=job.job_id)

    audit_job_event(
        db, job, "column_mapping_applied",
        f"Column mapping applied ({len(result.mapping)} source columns)",
        actor, from_status=from_status, mapping=result.mapping,
    )
    return job
