"""
JSON logging for the procurement core.

Every record is one JSON object. Workflow context passed through ``extra``
(correlation_id, job_id, ...) becomes top-level keys; when a record carries no
correlation_id, the id of the HTTP request being served is used instead.
Secrets are redacted from messages, tracebacks and audit details.
"""
import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from coprocure.core.config import settings

REDACTED = "***REDACTED***"

_SECRET_WORDS = ("password", "secret", "token", "api_key", "apikey", "authorization", "credential", "signed_url")

_SECRET_ASSIGNMENT = re.compile(
    r'(' + '|'.join(_SECRET_WORDS) + r')["\']?\s*[:=]\s*["\']?[^\s,;"\'}{]+',
    re.IGNORECASE,
)

# Extras promoted to top-level keys of the JSON entry
CONTEXT_FIELDS = (
    "correlation_id", "job_id", "user_id", "company_id",
    "action", "entity_type", "entity_id",
)

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}

_request_correlation: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_correlation_id", default=None,
)


def bind_request_correlation_id(value: str) -> contextvars.Token:
    return _request_correlation.set(value)


def reset_request_correlation_id(token: contextvars.Token) -> None:
    _request_correlation.reset(token)


def current_request_correlation_id() -> Optional[str]:
    return _request_correlation.get()


def _is_secret_key(key: Any) -> bool:
    lowered = str(key).lower()
    return any(word in lowered for word in _SECRET_WORDS)


def scrub(value: Any) -> Any:
    """Redact secrets in nested dicts/lists and in free text."""
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret_key(k) else scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(v) for v in value]
    if isinstance(value, str):
        return _SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}={REDACTED}", value)
    return value


class StructuredFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": settings.APP_NAME,
            "message": scrub(record.getMessage()),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if "correlation_id" not in entry:
            request_id = current_request_correlation_id()
            if request_id:
                entry["correlation_id"] = request_id

        if record.exc_info:
            entry["exception"] = scrub(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(level: Optional[int] = None) -> None:
    """Install the JSON handler on the root logger. Safe to call more than once."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    root.setLevel(level or (logging.DEBUG if settings.DEBUG else logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """
    Mirrors audit events into the log stream.

    For an event whose datastore write failed (``persisted=False``) this log
    line is the only remaining trace, so it is emitted at WARNING.
    """

    def __init__(self, name: str = "coprocure.audit"):
        self.logger = get_logger(name)

    def log(
        self,
        action: str,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        company_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[dict] = None,
        persisted: bool = True,
    ):
        target = f" {entity_type}:{entity_id}" if entity_type and entity_id else ""
        message = f"audit {action}{target}"
        if details:
            message += f" {json.dumps(scrub(details), default=str, sort_keys=True)}"
        if not persisted:
            message += " (not persisted)"

        self.logger.log(
            logging.INFO if persisted else logging.WARNING,
            message,
            extra={
                "correlation_id": correlation_id,
                "user_id": user_id,
                "company_id": company_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )


audit_logger = AuditLogger()
