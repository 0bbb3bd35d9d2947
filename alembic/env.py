"""Alembic environment for the engagements schema.

Connection settings come from DatabaseSettings (DATABASE_* env vars / .env).
Migrations always target PostgreSQL through the sync psycopg driver; the
SQLite development database is created by ensure_schema instead.
"""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool, text

from alembic import context
from src.config.settings import DatabaseSettings
from src.constants import DB_SCHEMA
from src.progress.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_db = DatabaseSettings(driver="postgresql+asyncpg")
DATABASE_URL = _db.url.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)

target_metadata = Base.metadata


def include_name(name, type_, parent_names):
    """Only compare objects in the engagements schema."""
    if type_ == "schema":
        return name == DB_SCHEMA
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table_schema=DB_SCHEMA,
        include_schemas=True,
        include_name=include_name,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection."""
    connectable = create_engine(
        DATABASE_URL,
        poolclass=pool.NullPool,
        connect_args={"options": f"-csearch_path={DB_SCHEMA},public"},
    )

    with connectable.connect() as connection:
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {DB_SCHEMA}"))
        connection.commit()

        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
