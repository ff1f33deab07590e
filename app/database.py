"""
Configuración de base de datos con SQLAlchemy 2.0 async.
Incluye el reintento acotado ante fallos de serialización.
"""

import asyncio
import functools
import logging
from typing import AsyncGenerator

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings
from app.core.exceptions import ConflictException

settings = get_settings()
logger = logging.getLogger(__name__)

# SQLSTATE de PostgreSQL: serialization_failure y deadlock_detected
SERIALIZATION_SQLSTATES = {"40001", "40P01"}


# ── Engine async ─────────────────────────────────────
def _engine_options() -> dict:
    if settings.is_sqlite:
        return {"echo": False}
    return {
        "echo": settings.DEBUG,
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "isolation_level": settings.DATABASE_ISOLATION_LEVEL,
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

# ── Session factory ──────────────────────────────────
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base declarativa ─────────────────────────────────
class Base(DeclarativeBase):
    pass


# ── Errores de concurrencia ──────────────────────────
def is_serialization_failure(exc: DBAPIError) -> bool:
    """True si el error del driver es un fallo de serialización o deadlock."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code in SERIALIZATION_SQLSTATES


def retry_on_serialization_failure(func):
    """
    Decorador para operaciones de escritura de primer nivel.

    La operación debe recibir la sesión como primer argumento. El commit
    forma parte del intento: PostgreSQL puede reportar el conflicto
    SERIALIZABLE recién al confirmar. Ante un fallo de serialización se hace
    rollback y se reintenta la operación completa, como máximo
    SERIALIZATION_RETRY_ATTEMPTS veces. Agotados los intentos se responde 409.
    """

    @functools.wraps(func)
    async def wrapper(db: AsyncSession, *args, **kwargs):
        attempts = max(1, settings.SERIALIZATION_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                result = await func(db, *args, **kwargs)
                await db.commit()
                return result
            except DBAPIError as exc:
                if isinstance(exc, IntegrityError) or not is_serialization_failure(exc):
                    raise
                await db.rollback()
                logger.warning(
                    "Fallo de serialización en %s (intento %d/%d)",
                    func.__name__, attempt, attempts,
                )
        raise ConflictException(
            "La operación compitió con otra transacción; intente de nuevo",
            code="SERIALIZATION_FAILURE",
        )

    return wrapper


async def flush_or_conflict(db: AsyncSession, detail: str, code: str) -> None:
    """Hace flush y traduce violaciones de unicidad/exclusión a 409."""
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("Violación de restricción (%s): %s", code, exc.orig)
        raise ConflictException(detail, code=code) from exc


# ── Dependency: sesión de DB ─────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency de FastAPI que provee una sesión de base de datos.
    Hace commit al terminar (las escrituras con reintento ya confirmaron su
    propia transacción) y rollback ante cualquier error o cancelación.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except DBAPIError as exc:
            await session.rollback()
            if is_serialization_failure(exc):
                raise ConflictException(
                    "La operación compitió con otra transacción; intente de nuevo",
                    code="SERIALIZATION_FAILURE",
                ) from exc
            raise
        except (Exception, asyncio.CancelledError):
            await session.rollback()
            raise
        finally:
            await session.close()


def dialect_insert(db: AsyncSession, model):
    """
    INSERT del dialecto activo (PostgreSQL o SQLite), ambos con soporte
    de ON CONFLICT DO NOTHING para altas idempotentes.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
