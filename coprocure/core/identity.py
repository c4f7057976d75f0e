"""
Job and correlation identifiers.

Identifiers are random (version 4) UUIDs rendered as lowercase canonical
strings. Once issued they are stored and passed around verbatim; nothing in
the core re-derives them.
"""
import re
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Placeholder strings some clients send instead of omitting the field
_NULLISH = {"", "null", "undefined", "none"}


def new_job_id() -> str:
    return str(uuid.uuid4())


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def new_record_id() -> str:
    """Primary key for decisions, purchase orders, evidence and audit rows."""
    return str(uuid.uuid4())


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def resolve_correlation_id(candidate: Optional[str]) -> str:
    """Accept a well-formed caller UUID verbatim, otherwise mint a fresh one."""
    if is_valid_uuid(candidate):
        return candidate
    return new_correlation_id()


def clean_identifier(value: Any) -> Optional[str]:
    """Trim an identifier and map nullish placeholders to None."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _NULLISH:
        return None
    return text


@dataclass(frozen=True)
class JobReference:
    """Canonical lookup key for an ingestion job."""
    job_id: Optional[str] = None
    correlation_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.job_id and not self.correlation_id


def normalize_job_reference(payload: Mapping[str, Any]) -> JobReference:
    """
    Build a JobReference from a callback body.

    The workflow engine has historically sent both snake_case and camelCase
    spellings; this is the only place that knows about them.
    """
    job_id = payload.get("job_id")
    if job_id is None:
        job_id = payload.get("jobId")
    correlation_id = payload.get("correlation_id")
    if correlation_id is None:
        correlation_id = payload.get("correlationId")
    return JobReference(
        job_id=clean_identifier(job_id),
        correlation_id=clean_identifier(correlation_id),
    )
