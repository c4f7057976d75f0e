"""
Alembic environment for the coprocure schema.

The database URL always comes from ``coprocure.core.config.settings`` so
migrations and the running service agree on the target database.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from coprocure.core.config import settings
from coprocure.db import models  # noqa: F401 - registers tables on Base.metadata
from coprocure.db.session import Base

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=settings.DATABASE_URL.startswith("sqlite"),
        **kwargs,
    )


def migrate_offline() -> None:
    """Emit SQL to stdout without connecting."""
    _configure(url=settings.DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def migrate_online() -> None:
    engine = create_engine(settings.DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
