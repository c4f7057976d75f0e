"""
Typed error taxonomy.

Services raise these; the API layer renders them with ``to_response()``.

    CoprocureError
    +-- ValidationError      malformed or missing input (400, never retried)
    +-- NotFoundError        unknown identifier (404)
    +-- StateError           operation invalid for the lifecycle state (409)
    +-- PersistenceError     datastore write failed (500, names the step)
    +-- UpstreamError        storage / workflow engine unreachable or non-2xx (502/504)
    +-- ConfigurationError   collaborator not configured (500)
    +-- ImmutableRecordError attempt to mutate evidence or audit rows
"""
from typing import Any, Dict, Iterable, Optional


class CoprocureError(Exception):
    code = "error"
    status_code = 500

    def __init__(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        if self.correlation_id:
            body["correlation_id"] = self.correlation_id
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CoprocureError):
    code = "validation_error"
    status_code = 400


class MissingFieldsError(ValidationError):
    """A mapping left required target fields unassigned."""

    def __init__(self, missing: Iterable[str], dataset_type: str, correlation_id: Optional[str] = None):
        self.missing = sorted(missing)
        super().__init__(
            f"Missing required fields for {dataset_type}: {', '.join(self.missing)}",
            correlation_id=correlation_id,
            details={"missing": self.missing, "dataset_type": dataset_type},
        )


class NotFoundError(CoprocureError):
    code = "not_found"
    status_code = 404


class StateError(CoprocureError):
    code = "invalid_state"
    status_code = 409


class PersistenceError(CoprocureError):
    code = "persistence_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        step: str,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.step = step
        merged = {"step": step}
        merged.update(details or {})
        super().__init__(message, correlation_id=correlation_id, details=merged)


class UpstreamError(CoprocureError):
    code = "upstream_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        timed_out: bool = False,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.upstream_status = upstream_status
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504
        merged = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = upstream_status
        super().__init__(message, correlation_id=correlation_id, details=merged)


class ConfigurationError(CoprocureError):
    code = "configuration_error"
    status_code = 500


class ImmutableRecordError(CoprocureError):
    code = "immutable_record"
    status_code = 500
