"""
Lógica de negocio de Caja: apertura, apertura automática y cierre de sesiones.

Invariante: a lo sumo una sesión abierta por (usuario, clínica). Lo garantiza
el índice único parcial `uq_cash_session_open_per_user_clinic`; la consulta
previa solo sirve para responder con un error claro.
"""

import logging
import math
import uuid
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal
from app.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.core.timeutils import utcnow
from app.database import dialect_insert, flush_or_conflict, retry_on_serialization_failure
from app.models.cash_session import (
    CashSession,
    CashSessionOpeningType,
    CashSessionStatus,
)
from app.models.clinic import Clinic
from app.models.reconciliation import Reconciliation, ReconciliationStatus
from app.schemas.cash_session import (
    CashSessionDetails,
    CashSessionListResponse,
    CashSessionOpen,
    CashSessionResponse,
)
from app.schemas.ledger import EntryResponse
from app.schemas.reconciliation import ReconciliationResponse
from app.services.audit_service import log_action

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────


async def _clinic_in_organization(db: AsyncSession, clinic_id: UUID, organization_id: UUID) -> bool:
    result = await db.execute(
        select(Clinic.id).where(
            Clinic.id == clinic_id,
            Clinic.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_open_session(
    db: AsyncSession, user_id: UUID, clinic_id: UUID
) -> CashSession | None:
    """Sesión abierta del usuario en la clínica, o None."""
    result = await db.execute(
        select(CashSession).where(
            CashSession.user_id == user_id,
            CashSession.clinic_id == clinic_id,
            CashSession.status == CashSessionStatus.OPEN,
        )
    )
    return result.scalars().first()


async def has_open_session(db: AsyncSession, user_id: UUID, clinic_id: UUID) -> bool:
    return await get_open_session(db, user_id, clinic_id) is not None


async def get_session(
    db: AsyncSession, session_id: UUID, principal: Principal
) -> CashSession:
    result = await db.execute(
        select(CashSession).where(
            CashSession.id == session_id,
            CashSession.organization_id == principal.organization_id,
        )
    )
    session = result.scalar_one_or_none()
    if not session:
        raise NotFoundException(
            "Sesión de caja", detail="Sesión de caja no encontrada", code="CASH_SESSION_NOT_FOUND"
        )
    return session


def require_open(session: CashSession) -> None:
    if session.status != CashSessionStatus.OPEN:
        raise InvalidStateException(
            "La sesión de caja ya fue cerrada", code="CASH_SESSION_ALREADY_CLOSED"
        )


# ── Session operations ────────────────────────────────


@retry_on_serialization_failure
async def open_session(
    db: AsyncSession,
    data: CashSessionOpen,
    principal: Principal,
) -> CashSession:
    """Abre manualmente una sesión de caja con fondo inicial."""
    if not await _clinic_in_organization(db, data.clinic_id, principal.organization_id):
        raise NotFoundException("Clínica", detail="Clínica no encontrada", code="CLINIC_NOT_FOUND")

    if await has_open_session(db, principal.user_id, data.clinic_id):
        raise ConflictException(
            "Ya existe una caja abierta para este usuario en la clínica. Ciérrala antes de abrir otra.",
            code="CASH_SESSION_ALREADY_OPEN",
        )
    if data.starting_float_cents < 0:
        raise ValidationException(
            "El fondo inicial no puede ser negativo", code="INVALID_STARTING_FLOAT"
        )

    session = CashSession(
        organization_id=principal.organization_id,
        clinic_id=data.clinic_id,
        user_id=principal.user_id,
        status=CashSessionStatus.OPEN,
        opening_type=CashSessionOpeningType.MANUAL,
        starting_float_cents=data.starting_float_cents,
        notes=data.notes,
    )
    db.add(session)
    await flush_or_conflict(
        db, "Ya existe una caja abierta para este usuario en la clínica", "CASH_SESSION_ALREADY_OPEN"
    )
    await db.refresh(session)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="cash_session",
        entity_id=session.id,
        action="open",
        new_data={
            "clinic_id": session.clinic_id,
            "opening_type": session.opening_type,
            "starting_float_cents": session.starting_float_cents,
        },
    )
    logger.info(
        "Caja abierta: %s usuario=%s clínica=%s fondo=%d",
        session.id, session.user_id, session.clinic_id, session.starting_float_cents,
    )
    return session


async def acquire_open_session(
    db: AsyncSession, organization_id: UUID, clinic_id: UUID, user_id: UUID
) -> CashSession:
    """
    Retorna la sesión abierta o abre una automática (fondo 0).
    El INSERT ... ON CONFLICT DO NOTHING sobre el índice parcial resuelve
    la carrera entre dos aperturas automáticas simultáneas.
    """
    session = await get_open_session(db, user_id, clinic_id)
    if session is not None:
        return session

    stmt = (
        dialect_insert(db, CashSession)
        .values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            clinic_id=clinic_id,
            user_id=user_id,
            status=CashSessionStatus.OPEN,
            opening_type=CashSessionOpeningType.AUTO,
            starting_float_cents=0,
            opened_at=utcnow(),
        )
        .on_conflict_do_nothing(
            index_elements=["user_id", "clinic_id"],
            index_where=text("status = 'open'"),
        )
    )
    await db.execute(stmt)

    session = await get_open_session(db, user_id, clinic_id)
    logger.info("Caja abierta automáticamente: %s usuario=%s clínica=%s", session.id, user_id, clinic_id)
    await log_action(
        db,
        organization_id=organization_id,
        user_id=user_id,
        entity="cash_session",
        entity_id=session.id,
        action="auto_open",
        new_data={"clinic_id": clinic_id},
    )
    return session


@retry_on_serialization_failure
async def get_or_create_open_session(
    db: AsyncSession, organization_id: UUID, clinic_id: UUID, user_id: UUID
) -> CashSession:
    """Idempotente: dos llamadas seguidas sin cierre devuelven la misma sesión."""
    if not await _clinic_in_organization(db, clinic_id, organization_id):
        raise NotFoundException("Clínica", detail="Clínica no encontrada", code="CLINIC_NOT_FOUND")
    return await acquire_open_session(db, organization_id, clinic_id, user_id)


async def get_current_session(
    db: AsyncSession, principal: Principal, clinic_id: UUID
) -> CashSession | None:
    return await get_open_session(db, principal.user_id, clinic_id)


@retry_on_serialization_failure
async def close_session(
    db: AsyncSession, session_id: UUID, principal: Principal
) -> CashSession:
    """
    Cierra una sesión de caja.

    Precondición: cada combinación (método de pago, moneda) presente en las
    entradas de la sesión debe tener su corte. Los cortes pendientes pasan
    a `closed` junto con la sesión.
    """
    from app.services.reconciliation_service import pending_combinations

    session = await get_session(db, session_id, principal)
    require_open(session)

    pending = await pending_combinations(db, session.id)
    if pending:
        combos = ", ".join(f"{m.value}/{c.value}" for m, c in pending)
        raise InvalidStateException(
            f"Faltan cortes de caja para: {combos}", code="RECONCILIATION_PENDING"
        )

    session.status = CashSessionStatus.CLOSED
    session.closed_at = utcnow()
    await db.execute(
        update(Reconciliation)
        .where(
            Reconciliation.cash_session_id == session.id,
            Reconciliation.status == ReconciliationStatus.PENDING,
        )
        .values(status=ReconciliationStatus.CLOSED)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    await db.refresh(session)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="cash_session",
        entity_id=session.id,
        action="close",
        old_data={"status": CashSessionStatus.OPEN},
        new_data={"status": session.status, "closed_at": session.closed_at},
    )
    logger.info("Caja cerrada: %s", session.id)
    return session


async def list_sessions(
    db: AsyncSession,
    principal: Principal,
    *,
    clinic_id: UUID | None = None,
    user_id: UUID | None = None,
    status: CashSessionStatus | None = None,
    page: int = 1,
    size: int = 20,
) -> CashSessionListResponse:
    """Lista sesiones de caja con paginación."""
    query = select(CashSession).where(CashSession.organization_id == principal.organization_id)
    if clinic_id:
        query = query.where(CashSession.clinic_id == clinic_id)
    if user_id:
        query = query.where(CashSession.user_id == user_id)
    if status:
        query = query.where(CashSession.status == status)

    count_query = select(func.count()).select_from(
        query.with_only_columns(CashSession.id).subquery()
    )
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(CashSession.opened_at.desc())
    query = query.offset((page - 1) * size).limit(size)
    result = await db.execute(query)
    sessions = result.scalars().all()

    return CashSessionListResponse(
        items=[CashSessionResponse.model_validate(s) for s in sessions],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


async def get_session_details(
    db: AsyncSession, session_id: UUID, principal: Principal
) -> CashSessionDetails:
    """Sesión con sus entradas, efectivo esperado, resumen por método y cortes."""
    from app.services import ledger_service, reconciliation_service

    session = await get_session(db, session_id, principal)
    entries = await ledger_service.list_session_entries(db, session.id)
    reconciliations = await reconciliation_service.list_by_session(db, session.id)

    return CashSessionDetails(
        session=CashSessionResponse.model_validate(session),
        entries=[EntryResponse.model_validate(e) for e in entries],
        expected_cash=await reconciliation_service.calculate_expected_cash(db, session.id),
        payment_summary=await ledger_service.session_payment_summary(db, session.id),
        reconciliations=[ReconciliationResponse.model_validate(r) for r in reconciliations],
    )
