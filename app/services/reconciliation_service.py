"""
Cortes de caja: montos esperados según el libro vs. montos contados.

    esperado    = suma con signo de las entradas de la sesión con ese
                  (método de pago, moneda)
    depositado  = contado - fondo que queda en cajón
    diferencia  = contado - esperado

Un corte por (sesión, método, moneda). Un segundo corte para la misma
combinación se rechaza; para reabrir la discusión se marca el existente
como `disputed`.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal
from app.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.database import flush_or_conflict, retry_on_serialization_failure
from app.models.ledger import AppointmentAccountEntry, Currency, PaymentMethod
from app.models.reconciliation import Reconciliation, ReconciliationStatus
from app.schemas.reconciliation import (
    DiscrepancyListResponse,
    ReconciliationCombination,
    ReconciliationCreate,
    ReconciliationDispute,
    ReconciliationPreview,
    ReconciliationResponse,
)
from app.services import cash_session_service, ledger_service
from app.services.audit_service import log_action

logger = logging.getLogger(__name__)


# ── Montos esperados ─────────────────────────────────

async def calculate_expected_cash(db: AsyncSession, session_id: UUID) -> dict[Currency, int]:
    """
    Efectivo esperado por moneda: suma con signo de las entradas en efectivo
    de la sesión (pagos, reembolsos y sus correcciones).
    """
    result = await db.execute(
        select(
            AppointmentAccountEntry.currency,
            func.coalesce(func.sum(AppointmentAccountEntry.amount_cents), 0),
        )
        .where(
            AppointmentAccountEntry.cash_session_id == session_id,
            AppointmentAccountEntry.payment_method == PaymentMethod.CASH,
        )
        .group_by(AppointmentAccountEntry.currency)
    )
    return {currency: int(total) for currency, total in result.all()}


async def calculate_expected_amount(
    db: AsyncSession,
    session_id: UUID,
    payment_method: PaymentMethod,
    currency: Currency,
) -> int:
    return await ledger_service.sum_session_entries(db, session_id, payment_method, currency)


async def list_by_session(db: AsyncSession, session_id: UUID) -> list[Reconciliation]:
    result = await db.execute(
        select(Reconciliation)
        .where(Reconciliation.cash_session_id == session_id)
        .order_by(Reconciliation.payment_method, Reconciliation.currency)
    )
    return list(result.scalars().all())


async def pending_combinations(
    db: AsyncSession, session_id: UUID
) -> list[tuple[PaymentMethod, Currency]]:
    """Combinaciones (método, moneda) presentes en la sesión sin corte."""
    summary = await ledger_service.session_payment_summary(db, session_id)
    done = {(r.payment_method, r.currency) for r in await list_by_session(db, session_id)}
    return [
        (item.payment_method, item.currency)
        for item in summary
        if (item.payment_method, item.currency) not in done
    ]


async def get_reconciliation_preview(
    db: AsyncSession, session_id: UUID, principal: Principal
) -> ReconciliationPreview:
    """Montos esperados por combinación y cortes ya registrados."""
    session = await cash_session_service.get_session(db, session_id, principal)
    summary = await ledger_service.session_payment_summary(db, session.id)
    reconciliations = await list_by_session(db, session.id)
    done = {(r.payment_method, r.currency) for r in reconciliations}

    combinations = [
        ReconciliationCombination(
            payment_method=item.payment_method,
            currency=item.currency,
            expected_amount_cents=item.total_cents,
        )
        for item in summary
    ]
    return ReconciliationPreview(
        cash_session_id=session.id,
        starting_float_cents=session.starting_float_cents,
        combinations=combinations,
        pending=[c for c in combinations if (c.payment_method, c.currency) not in done],
        reconciliations=[ReconciliationResponse.model_validate(r) for r in reconciliations],
    )


# ── Cortes ───────────────────────────────────────────

@retry_on_serialization_failure
async def create_reconciliation(
    db: AsyncSession, data: ReconciliationCreate, principal: Principal
) -> Reconciliation:
    """Registra el corte de una combinación (método, moneda) de una sesión abierta."""
    session = await cash_session_service.get_session(db, data.cash_session_id, principal)
    cash_session_service.require_open(session)

    if data.actual_amount_cents < 0:
        raise ValidationException(
            "El monto contado no puede ser negativo", code="INVALID_ACTUAL_AMOUNT"
        )
    if data.float_left_cents < 0:
        raise ValidationException(
            "El fondo que queda en cajón no puede ser negativo", code="INVALID_FLOAT_LEFT"
        )

    existing = await db.execute(
        select(Reconciliation.id).where(
            Reconciliation.cash_session_id == session.id,
            Reconciliation.payment_method == data.payment_method,
            Reconciliation.currency == data.currency,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictException(
            f"Ya existe un corte {data.payment_method.value}/{data.currency.value} para esta sesión",
            code="RECONCILIATION_ALREADY_EXISTS",
        )

    expected = await calculate_expected_amount(
        db, session.id, data.payment_method, data.currency
    )
    reconciliation = Reconciliation(
        cash_session_id=session.id,
        organization_id=session.organization_id,
        clinic_id=session.clinic_id,
        payment_method=data.payment_method,
        currency=data.currency,
        reconciled_by_user_id=principal.user_id,
        expected_amount_cents=expected,
        actual_amount_cents=data.actual_amount_cents,
        float_left_cents=data.float_left_cents,
        deposited_cents=data.actual_amount_cents - data.float_left_cents,
        discrepancy_cents=data.actual_amount_cents - expected,
        envelope_id=data.envelope_id,
        status=ReconciliationStatus.PENDING,
        notes=data.notes,
    )
    db.add(reconciliation)
    await flush_or_conflict(
        db, "Ya existe un corte para esta combinación", "RECONCILIATION_ALREADY_EXISTS"
    )
    await db.refresh(reconciliation)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="reconciliation",
        entity_id=reconciliation.id,
        action="create",
        new_data={
            "cash_session_id": session.id,
            "payment_method": reconciliation.payment_method,
            "currency": reconciliation.currency,
            "expected_amount_cents": reconciliation.expected_amount_cents,
            "actual_amount_cents": reconciliation.actual_amount_cents,
            "discrepancy_cents": reconciliation.discrepancy_cents,
        },
    )
    if reconciliation.has_discrepancy:
        logger.warning(
            "Corte %s con diferencia de %d (%s/%s)",
            reconciliation.id, reconciliation.discrepancy_cents,
            reconciliation.payment_method.value, reconciliation.currency.value,
        )
    else:
        logger.info("Corte %s registrado sin diferencia", reconciliation.id)
    return reconciliation


@retry_on_serialization_failure
async def dispute_reconciliation(
    db: AsyncSession,
    reconciliation_id: UUID,
    data: ReconciliationDispute,
    principal: Principal,
) -> Reconciliation:
    """Marca un corte como disputado para revisión."""
    result = await db.execute(
        select(Reconciliation).where(
            Reconciliation.id == reconciliation_id,
            Reconciliation.organization_id == principal.organization_id,
        )
    )
    reconciliation = result.scalar_one_or_none()
    if not reconciliation:
        raise NotFoundException(
            "Corte", detail="Corte de caja no encontrado", code="RECONCILIATION_NOT_FOUND"
        )
    if reconciliation.status == ReconciliationStatus.DISPUTED:
        raise InvalidStateException(
            "El corte ya está en disputa", code="RECONCILIATION_ALREADY_DISPUTED"
        )

    old_status = reconciliation.status
    reconciliation.status = ReconciliationStatus.DISPUTED
    reconciliation.notes = (
        f"{reconciliation.notes}\n{data.notes}" if reconciliation.notes else data.notes
    )
    await db.flush()
    await db.refresh(reconciliation)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="reconciliation",
        entity_id=reconciliation.id,
        action="dispute",
        old_data={"status": old_status},
        new_data={"status": reconciliation.status, "notes": data.notes},
    )
    return reconciliation


async def list_discrepancies(
    db: AsyncSession,
    principal: Principal,
    clinic_id: UUID,
    start_date: date,
    end_date: date,
) -> DiscrepancyListResponse:
    """Cortes con diferencia distinta de cero en el rango de fechas (inclusive)."""
    start_dt = datetime.combine(start_date, time.min).replace(tzinfo=timezone.utc)
    end_dt = datetime.combine(end_date, time.min).replace(tzinfo=timezone.utc) + timedelta(days=1)

    result = await db.execute(
        select(Reconciliation)
        .where(
            Reconciliation.organization_id == principal.organization_id,
            Reconciliation.clinic_id == clinic_id,
            Reconciliation.discrepancy_cents != 0,
            Reconciliation.reconciled_at >= start_dt,
            Reconciliation.reconciled_at < end_dt,
        )
        .order_by(Reconciliation.reconciled_at.desc())
    )
    items = list(result.scalars().all())
    return DiscrepancyListResponse(
        items=[ReconciliationResponse.model_validate(r) for r in items],
        total=len(items),
        total_discrepancy_cents=sum(r.discrepancy_cents for r in items),
    )
