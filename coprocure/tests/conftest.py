"""
Shared fixtures: in-memory SQLite database, mocked workflow engine, API client.
"""
import os

os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-coprocure-suite-0123456789"
os.environ.pop("WORKFLOW_ENGINE_BASE_URL", None)
os.environ.pop("WORKFLOW_CALLBACK_TOKEN", None)

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.exc import OperationalError  # noqa: E402

from coprocure.core.identity import new_correlation_id, new_job_id  # noqa: E402
from coprocure.core.rbac import ActorContext  # noqa: E402
from coprocure.core.security import create_access_token  # noqa: E402
from coprocure.db import models  # noqa: E402
from coprocure.db.session import Base, SessionLocal, engine  # noqa: E402
from coprocure.services.workflow_engine import UploadTarget  # noqa: E402

SIGNED_URL = "https://storage.test/uploads/file.csv?sig=abc123"


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def operator():
    return ActorContext(user_id="user-op", role="operator", company_id="acme")


@pytest.fixture
def committee_member():
    return ActorContext(user_id="user-committee", role="committee", company_id="acme")


@pytest.fixture
def mock_engine():
    """Workflow engine double: every call succeeds."""
    engine_client = MagicMock()
    engine_client.base_url = "http://engine.test"
    engine_client.open_session = AsyncMock(return_value=UploadTarget(signed_url=SIGNED_URL))
    engine_client.confirm_upload = AsyncMock(return_value={"ok": True})
    engine_client.apply_mapping = AsyncMock(return_value={"ok": True})
    return engine_client


@pytest.fixture
def make_job(db_session):
    """Insert an ingestion job directly, bypassing the engine."""
    def _make(status="running", dataset_type="needs", started_at=None, correlation_id=None, **fields):
        job = models.IngestionJob(
            job_id=new_job_id(),
            correlation_id=correlation_id or new_correlation_id(),
            status=status,
            dataset_type=dataset_type,
            company_id="acme",
            user_id="user-op",
            file_name="needs.csv",
            content_type="text/csv",
            started_at=started_at or datetime.now(timezone.utc),
            **fields,
        )
        if status in ("completed", "error", "failed"):
            job.ended_at = datetime.now(timezone.utc)
        db_session.add(job)
        db_session.commit()
        return job
    return _make


@pytest.fixture
def fail_on():
    """
    Make the ORM raise a datastore error when flushing a given model.

    Usage: ``fail_on(models.PurchaseOrder, "before_insert")``. Listeners are
    removed when the test ends.
    """
    registered = []

    def _raise(mapper, connection, target):
        raise OperationalError("INSERT/UPDATE", {}, Exception("database unavailable"))

    def _fail_on(model, event_name="before_insert"):
        event.listen(model, event_name, _raise)
        registered.append((model, event_name))

    yield _fail_on

    for model, event_name in registered:
        event.remove(model, event_name, _raise)


def auth_headers(role: str = "operator", user_id: str = "user-1", company_id: str = "acme") -> dict:
    token = create_access_token({"sub": user_id, "role": role, "company_id": company_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
