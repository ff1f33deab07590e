"""
Alembic env.py — SQLAlchemy async, URL tomada de Settings.

Las migraciones corren en READ COMMITTED aunque la app use SERIALIZABLE:
el DDL no necesita aislamiento serializable y así no compite con la retry
de la aplicación. Los objetos creados con SQL crudo (exclusión por rango,
trigger INSERT-only) no existen en los modelos y se excluyen del
autogenerate.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from app.config import get_settings
from app.database import Base

# Registrar todas las tablas en Base.metadata
import app.models  # noqa: F401

settings = get_settings()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Solo existen en la migración (PostgreSQL)
RAW_SQL_OBJECTS = {
    "excl_appointment_doctor_overlap",
    "excl_appointment_unit_overlap",
    "trg_entries_insert_only",
}


def include_object(object, name, type_, reflected, compare_to):
    return name not in RAW_SQL_OBJECTS


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        include_object=include_object,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Genera el SQL sin conectarse a la base."""
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = create_async_engine(
        settings.DATABASE_URL,
        poolclass=pool.NullPool,
        isolation_level="READ COMMITTED",
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
