"""
ORM-level append-only enforcement for evidence records and audit events.

Any UPDATE or DELETE flushed through the ORM raises ImmutableRecordError
before SQL reaches the database.
"""
from sqlalchemy import event

from coprocure.core.errors import ImmutableRecordError
from coprocure.db.models import AuditEvent, EvidenceRecord


def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"{target.__tablename__} rows are immutable; create a new record instead",
        details={"table": target.__tablename__},
    )


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{target.__tablename__} rows cannot be deleted",
        details={"table": target.__tablename__},
    )


for _model in (EvidenceRecord, AuditEvent):
    event.listen(_model, "before_update", _reject_update)
    event.listen(_model, "before_delete", _reject_delete)
