"""
Libro contable por cita (INSERT-only).

Cada cita tiene a lo sumo una cuenta, creada con la primera entrada. Las
entradas nunca se modifican: un error se corrige insertando una entrada
`correction` de signo opuesto. Saldos y totales se calculan como un fold
sobre la secuencia ordenada de entradas.
"""

import logging
import uuid
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal
from app.core.exceptions import NotFoundException, ValidationException
from app.database import dialect_insert, retry_on_serialization_failure
from app.models.appointment import Appointment
from app.models.cash_session import CashSession
from app.models.doctor import Doctor, DoctorType
from app.models.ledger import (
    SIGN_RULES,
    AmountSign,
    AppointmentAccount,
    AppointmentAccountEntry,
    Currency,
    EntryType,
    PaymentMethod,
)
from app.schemas.cash_session import PaymentSummaryItem
from app.schemas.ledger import (
    AccountBalanceResponse,
    CorrectionCreate,
    CurrencyTotals,
    EntryCreate,
    EntryResponse,
    ExternalDoctorCharge,
    InternalDoctorCharge,
)
from app.services import cash_session_service
from app.services.audit_service import log_action
from app.services.scheduling_service import get_appointment

logger = logging.getLogger(__name__)


# ── Cuentas ──────────────────────────────────────────

async def get_account_by_appointment(
    db: AsyncSession, appointment_id: UUID
) -> AppointmentAccount | None:
    result = await db.execute(
        select(AppointmentAccount).where(AppointmentAccount.appointment_id == appointment_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_account(
    db: AsyncSession, appointment: Appointment
) -> AppointmentAccount:
    """Cuenta de la cita; la crea si no existe (idempotente por appointment_id)."""
    account = await get_account_by_appointment(db, appointment.id)
    if account is not None:
        return account

    stmt = (
        dialect_insert(db, AppointmentAccount)
        .values(
            id=uuid.uuid4(),
            organization_id=appointment.organization_id,
            appointment_id=appointment.id,
        )
        .on_conflict_do_nothing(index_elements=["appointment_id"])
    )
    await db.execute(stmt)
    account = await get_account_by_appointment(db, appointment.id)
    logger.info("Cuenta %s creada para la cita %s", account.id, appointment.id)
    return account


# ── Validación ───────────────────────────────────────

def _check_sign(entry_type: EntryType, amount_cents: int) -> None:
    rule = SIGN_RULES[entry_type]
    if rule == AmountSign.POSITIVE and amount_cents <= 0:
        raise ValidationException(
            f"El monto de '{entry_type.value}' debe ser positivo", code="INVALID_AMOUNT_SIGN"
        )
    if rule == AmountSign.NEGATIVE and amount_cents >= 0:
        raise ValidationException(
            f"El monto de '{entry_type.value}' debe ser negativo", code="INVALID_AMOUNT_SIGN"
        )
    # OPPOSITE_OF_CORRECTED se valida contra la entrada corregida


def _validate_fields(data: EntryCreate) -> None:
    """Validaciones que no requieren DB, en el orden del libro."""
    if data.amount_cents == 0:
        raise ValidationException("El monto no puede ser cero", code="AMOUNT_CANNOT_BE_ZERO")

    _check_sign(data.type, data.amount_cents)

    if data.currency == Currency.USD and data.exchange_rate_used is None:
        raise ValidationException(
            "Las entradas en USD requieren tipo de cambio", code="EXCHANGE_RATE_REQUIRED"
        )

    if data.type == EntryType.PAYMENT and data.payment_method is None:
        raise ValidationException(
            "Los pagos requieren método de pago", code="PAYMENT_METHOD_REQUIRED"
        )
    if data.type in (EntryType.SERVICE_CHARGE, EntryType.DISCOUNT) and data.payment_method is not None:
        raise ValidationException(
            f"'{data.type.value}' no lleva método de pago", code="PAYMENT_METHOD_NOT_ALLOWED"
        )

    if data.type == EntryType.SERVICE_CHARGE:
        if data.doctor_id is None or data.service_charge is None:
            raise ValidationException(
                "Los cargos por servicio requieren doctor y tipo de doctor con su comisión u honorario",
                code="SERVICE_CHARGE_DETAIL_REQUIRED",
            )
    elif data.service_charge is not None:
        raise ValidationException(
            "Solo los cargos por servicio llevan detalle de doctor",
            code="SERVICE_CHARGE_DETAIL_NOT_ALLOWED",
        )

    if data.type == EntryType.CORRECTION:
        if data.corrects_entry_id is None:
            raise ValidationException(
                "Las correcciones deben indicar la entrada que corrigen",
                code="CORRECTS_ENTRY_REQUIRED",
            )
    elif data.corrects_entry_id is not None:
        raise ValidationException(
            "Solo las correcciones referencian otra entrada", code="CORRECTS_ENTRY_NOT_ALLOWED"
        )


async def _get_corrected_entry(
    db: AsyncSession, data: EntryCreate, appointment: Appointment
) -> AppointmentAccountEntry:
    """
    La entrada corregida debe existir, ser de la misma cuenta, de signo
    opuesto y en la misma moneda. El método de pago, si se indica, debe ser
    el de la entrada corregida; si se omite se hereda.
    """
    result = await db.execute(
        select(AppointmentAccountEntry, AppointmentAccount.appointment_id)
        .join(AppointmentAccount, AppointmentAccountEntry.appointment_account_id == AppointmentAccount.id)
        .where(
            AppointmentAccountEntry.id == data.corrects_entry_id,
            AppointmentAccount.organization_id == appointment.organization_id,
        )
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundException("Entrada", detail="Entrada a corregir no encontrada", code="ENTRY_NOT_FOUND")

    corrected, appointment_id = row
    if appointment_id != appointment.id:
        raise ValidationException(
            "La entrada a corregir pertenece a otra cuenta", code="CORRECTION_ACCOUNT_MISMATCH"
        )
    if (corrected.amount_cents > 0) == (data.amount_cents > 0):
        raise ValidationException(
            "La corrección debe tener signo opuesto a la entrada corregida", code="CORRECTION_SIGN"
        )
    if corrected.currency != data.currency:
        raise ValidationException(
            "La corrección debe estar en la moneda de la entrada corregida",
            code="CORRECTION_CURRENCY_MISMATCH",
        )
    if corrected.payment_method is None and data.payment_method is not None:
        raise ValidationException(
            "La entrada corregida no tiene método de pago; la corrección tampoco",
            code="PAYMENT_METHOD_NOT_ALLOWED",
        )
    if (
        corrected.payment_method is not None
        and data.payment_method is not None
        and data.payment_method != corrected.payment_method
    ):
        raise ValidationException(
            "La corrección debe usar el método de pago de la entrada corregida",
            code="CORRECTION_PAYMENT_METHOD_MISMATCH",
        )
    return corrected


async def _require_doctor(db: AsyncSession, data: EntryCreate, principal: Principal) -> Doctor:
    """El doctor del cargo debe existir y ser del tipo declarado en el detalle."""
    result = await db.execute(
        select(Doctor).where(
            Doctor.id == data.doctor_id,
            Doctor.organization_id == principal.organization_id,
        )
    )
    doctor = result.scalar_one_or_none()
    if doctor is None:
        raise NotFoundException("Doctor", code="DOCTOR_NOT_FOUND")
    if doctor.doctor_type.value != data.service_charge.doctor_type:
        raise ValidationException(
            f"El doctor es {doctor.doctor_type.value} y el cargo se declaró "
            f"{data.service_charge.doctor_type}",
            code="DOCTOR_TYPE_MISMATCH",
        )
    return doctor


async def _resolve_cash_session(
    db: AsyncSession,
    data: EntryCreate,
    payment_method: PaymentMethod | None,
    appointment: Appointment,
    principal: Principal,
) -> CashSession | None:
    """
    Sesión a la que se asocia la entrada:
    - la indicada explícitamente (abierta y de la clínica de la cita);
    - en efectivo, la sesión abierta del usuario o una automática;
    - con otro método, la sesión abierta si existe.
    """
    if data.cash_session_id is not None:
        session = await cash_session_service.get_session(db, data.cash_session_id, principal)
        cash_session_service.require_open(session)
        if session.clinic_id != appointment.clinic_id:
            raise ValidationException(
                "La sesión de caja es de otra clínica", code="CASH_SESSION_CLINIC_MISMATCH"
            )
        return session
    if payment_method == PaymentMethod.CASH:
        return await cash_session_service.acquire_open_session(
            db, principal.organization_id, appointment.clinic_id, principal.user_id
        )
    if payment_method is not None:
        return await cash_session_service.get_open_session(
            db, principal.user_id, appointment.clinic_id
        )
    return None


# ── Entradas ─────────────────────────────────────────

async def _create_entry(
    db: AsyncSession, data: EntryCreate, principal: Principal
) -> AppointmentAccountEntry:
    appointment = await get_appointment(db, data.appointment_id, principal)

    _validate_fields(data)

    if data.doctor_id is not None and data.type == EntryType.SERVICE_CHARGE:
        await _require_doctor(db, data, principal)

    payment_method = data.payment_method
    if data.type == EntryType.CORRECTION:
        corrected = await _get_corrected_entry(db, data, appointment)
        if payment_method is None:
            payment_method = corrected.payment_method

    if data.account_id is not None:
        existing = await get_account_by_appointment(db, appointment.id)
        if existing is None or existing.id != data.account_id:
            raise ValidationException(
                "La cuenta indicada no corresponde a la cita", code="ACCOUNT_MISMATCH"
            )

    session = await _resolve_cash_session(db, data, payment_method, appointment, principal)
    account = await get_or_create_account(db, appointment)

    detail = data.service_charge
    entry = AppointmentAccountEntry(
        appointment_account_id=account.id,
        type=data.type,
        currency=data.currency,
        amount_cents=data.amount_cents,
        description=data.description,
        created_by_user_id=principal.user_id,
        payment_method=payment_method,
        exchange_rate_used=data.exchange_rate_used,
        doctor_id=data.doctor_id if data.type == EntryType.SERVICE_CHARGE else None,
        corrects_entry_id=data.corrects_entry_id,
        service_id=data.service_id,
        quantity=data.quantity if data.quantity is not None else 1,
        unit_price_cents=data.unit_price_cents,
        notes=data.notes,
        cash_session_id=session.id if session is not None else None,
    )
    if isinstance(detail, InternalDoctorCharge):
        entry.doctor_type = DoctorType.INTERNAL
        entry.commission_pct = detail.commission_pct
    elif isinstance(detail, ExternalDoctorCharge):
        entry.doctor_type = DoctorType.EXTERNAL
        entry.external_doctor_fee_cents = detail.external_doctor_fee_cents
    entry.is_sensitive = entry.doctor_type == DoctorType.EXTERNAL

    db.add(entry)
    await db.flush()
    await db.refresh(entry)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="ledger_entry",
        entity_id=entry.id,
        action="create",
        new_data={
            "appointment_id": appointment.id,
            "type": entry.type,
            "currency": entry.currency,
            "amount_cents": entry.amount_cents,
            "payment_method": entry.payment_method,
            "cash_session_id": entry.cash_session_id,
            "corrects_entry_id": entry.corrects_entry_id,
        },
    )
    logger.info(
        "Entrada %s registrada: %s %d %s (cita %s)",
        entry.id, entry.type.value, entry.amount_cents, entry.currency.value, appointment.id,
    )
    return entry


@retry_on_serialization_failure
async def create_entry(
    db: AsyncSession, data: EntryCreate, principal: Principal
) -> AppointmentAccountEntry:
    """
    Registra una entrada en la cuenta de la cita.

    Orden de validación: monto distinto de cero → signo según tipo →
    tipo de cambio si USD → método si pago → doctor y detalle si cargo por
    servicio → entrada corregida (misma cuenta, signo opuesto) si corrección.
    Cualquier falla aborta sin escribir nada.
    """
    return await _create_entry(db, data, principal)


@retry_on_serialization_failure
async def create_correction(
    db: AsyncSession,
    entry_id: UUID,
    data: CorrectionCreate,
    principal: Principal,
) -> AppointmentAccountEntry:
    """Revierte por completo una entrada: monto opuesto, misma moneda y método."""
    result = await db.execute(
        select(AppointmentAccountEntry, AppointmentAccount.appointment_id)
        .join(AppointmentAccount, AppointmentAccountEntry.appointment_account_id == AppointmentAccount.id)
        .where(
            AppointmentAccountEntry.id == entry_id,
            AppointmentAccount.organization_id == principal.organization_id,
        )
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundException("Entrada", detail="Entrada no encontrada", code="ENTRY_NOT_FOUND")
    original, appointment_id = row

    correction = EntryCreate(
        appointment_id=appointment_id,
        type=EntryType.CORRECTION,
        currency=original.currency,
        amount_cents=-original.amount_cents,
        description=data.description,
        payment_method=original.payment_method,
        exchange_rate_used=original.exchange_rate_used,
        corrects_entry_id=original.id,
        notes=data.notes,
    )
    return await _create_entry(db, correction, principal)


async def list_entries(
    db: AsyncSession, account_id: UUID
) -> list[AppointmentAccountEntry]:
    """Entradas de la cuenta en orden de creación."""
    result = await db.execute(
        select(AppointmentAccountEntry)
        .where(AppointmentAccountEntry.appointment_account_id == account_id)
        .order_by(AppointmentAccountEntry.created_at, AppointmentAccountEntry.id)
    )
    return list(result.scalars().all())


# ── Saldos (fold sobre las entradas) ─────────────────

def _effective_type(
    entry: AppointmentAccountEntry, by_id: dict[UUID, AppointmentAccountEntry]
) -> EntryType:
    """Una corrección cuenta en el tipo de la entrada que corrige (en cadena)."""
    current = entry
    seen: set[UUID] = set()
    while current.type == EntryType.CORRECTION and current.corrects_entry_id in by_id:
        if current.id in seen:
            break
        seen.add(current.id)
        current = by_id[current.corrects_entry_id]
    return current.type


def fold_entries(entries: Iterable[AppointmentAccountEntry]) -> dict[Currency, CurrencyTotals]:
    entries = list(entries)
    by_id = {e.id: e for e in entries}
    totals: dict[Currency, CurrencyTotals] = {}

    for entry in entries:
        t = totals.setdefault(entry.currency, CurrencyTotals())
        t.balance_cents += entry.amount_cents
        effective = _effective_type(entry, by_id)
        if effective == EntryType.SERVICE_CHARGE:
            t.service_charges_cents += entry.amount_cents
        elif effective == EntryType.DISCOUNT:
            t.discounts_cents += entry.amount_cents
        elif effective == EntryType.PAYMENT:
            t.payments_cents += entry.amount_cents
        elif effective == EntryType.REFUND:
            t.refunds_cents += entry.amount_cents
        if effective in (EntryType.PAYMENT, EntryType.REFUND) and entry.payment_method is not None:
            t.payments_by_method[entry.payment_method] = (
                t.payments_by_method.get(entry.payment_method, 0) + entry.amount_cents
            )

    for t in totals.values():
        t.balance_due_cents = (t.service_charges_cents + t.discounts_cents) - (
            t.payments_cents + t.refunds_cents
        )
    return totals


async def get_account_balance(
    db: AsyncSession,
    appointment_id: UUID,
    principal: Principal,
    include_entries: bool = True,
) -> AccountBalanceResponse:
    """Saldo de la cuenta de una cita. Sin cuenta todavía, saldo cero."""
    appointment = await get_appointment(db, appointment_id, principal)
    account = await get_account_by_appointment(db, appointment.id)
    entries = await list_entries(db, account.id) if account else []

    return AccountBalanceResponse(
        account_id=account.id if account else None,
        appointment_id=appointment.id,
        entry_count=len(entries),
        balance_cents=sum(e.amount_cents for e in entries),
        by_currency=fold_entries(entries),
        entries=[EntryResponse.model_validate(e) for e in entries] if include_entries else [],
    )


# ── Agregados por sesión de caja ─────────────────────

async def list_session_entries(
    db: AsyncSession, session_id: UUID
) -> list[AppointmentAccountEntry]:
    result = await db.execute(
        select(AppointmentAccountEntry)
        .where(AppointmentAccountEntry.cash_session_id == session_id)
        .order_by(AppointmentAccountEntry.created_at, AppointmentAccountEntry.id)
    )
    return list(result.scalars().all())


async def sum_session_entries(
    db: AsyncSession,
    session_id: UUID,
    payment_method: PaymentMethod,
    currency: Currency,
    entry_types: Iterable[EntryType] | None = None,
) -> int:
    """Suma con signo de las entradas de la sesión para (método, moneda)."""
    query = select(func.coalesce(func.sum(AppointmentAccountEntry.amount_cents), 0)).where(
        AppointmentAccountEntry.cash_session_id == session_id,
        AppointmentAccountEntry.payment_method == payment_method,
        AppointmentAccountEntry.currency == currency,
    )
    if entry_types is not None:
        query = query.where(AppointmentAccountEntry.type.in_(list(entry_types)))
    result = await db.execute(query)
    return int(result.scalar() or 0)


async def session_payment_summary(
    db: AsyncSession, session_id: UUID
) -> list[PaymentSummaryItem]:
    """Totales de la sesión agrupados por (método, moneda), solo entradas con método."""
    result = await db.execute(
        select(
            AppointmentAccountEntry.payment_method,
            AppointmentAccountEntry.currency,
            func.coalesce(func.sum(AppointmentAccountEntry.amount_cents), 0),
            func.count(AppointmentAccountEntry.id),
        )
        .where(
            AppointmentAccountEntry.cash_session_id == session_id,
            AppointmentAccountEntry.payment_method.is_not(None),
        )
        .group_by(AppointmentAccountEntry.payment_method, AppointmentAccountEntry.currency)
        .order_by(AppointmentAccountEntry.payment_method, AppointmentAccountEntry.currency)
    )
    return [
        PaymentSummaryItem(
            payment_method=method,
            currency=currency,
            total_cents=int(total),
            entry_count=count,
        )
        for method, currency, total, count in result.all()
    ]
