"""
Database session management with SQLAlchemy.
"""
import time
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Any, Generator, Optional
from contextlib import contextmanager

from coprocure.core.config import settings
from coprocure.core.errors import ConfigurationError, PersistenceError
from coprocure.core.logging import get_logger

logger = get_logger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def commit_or_raise(
    db: Session,
    step: str,
    correlation_id: Optional[str] = None,
    **context: Any,
) -> None:
    """
    Commit the pending unit of work or raise PersistenceError naming ``step``.

    The session is rolled back before raising so it stays usable.
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Datastore write failed at step {step}: {e}",
            extra={"correlation_id": correlation_id, "action": step},
        )
        raise PersistenceError(
            f"Failed at step {step}: {e.__class__.__name__}",
            step=step,
            correlation_id=correlation_id,
            details={k: v for k, v in context.items() if v is not None},
        ) from e


def check_database(retries: int = 5, delay: float = 2) -> None:
    """Run ``SELECT 1`` until the database answers or retries run out."""
    safe_url = settings.DATABASE_URL.split("@")[-1] if "@" in settings.DATABASE_URL else "configured URL"
    logger.info(f"Running DB preflight check against: {safe_url}")

    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return
        except OperationalError as e:
            if "password authentication failed" in str(e).lower():
                raise ConfigurationError(
                    f"Database authentication failed for user {settings.POSTGRES_USER}"
                ) from e
            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {e}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                raise ConfigurationError(
                    f"Could not connect to database after {retries} attempts"
                ) from e


def init_db():
    """
    Verify connectivity and schema on startup.

    Schema is managed by Alembic migrations (``alembic upgrade head``); tables
    are only created here when DEBUG is on.
    """
    check_database()

    from coprocure.db import models  # noqa - register models

    existing_tables = set(inspect(engine).get_table_names())
    required_tables = {
        models.IngestionJob.__tablename__,
        models.CommitteeDecision.__tablename__,
        models.AuditEvent.__tablename__,
    }
    missing = sorted(required_tables - existing_tables)
    if not missing:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")
        return

    if settings.DEBUG:
        logger.warning(f"Missing tables {missing}; DEBUG=true, creating schema (NOT for production!)")
        Base.metadata.create_all(bind=engine)
    else:
        logger.error(
            f"Missing required tables: {missing}. Run the Alembic migrations: alembic upgrade head"
        )
