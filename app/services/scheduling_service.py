"""
Servicio de agenda: alta y reprogramación de citas, state machine,
cola de reprogramación y cálculo de horarios libres.

Toda operación valida por completo antes de escribir: si falla cualquier
verificación no se persiste nada.
"""

import logging
import math
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal
from app.config import get_settings
from app.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.core.timeutils import ensure_utc, utcnow
from app.database import flush_or_conflict, retry_on_serialization_failure
from app.models.appointment import (
    ACTIVE_STATUSES,
    VALID_TRANSITIONS,
    Appointment,
    AppointmentStatus,
    is_valid_transition,
)
from app.models.doctor import Doctor
from app.models.patient import Patient
from app.models.unit import Unit
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusChange,
    BulkMoveToQueueRequest,
    QueueItemResponse,
    QueueListResponse,
    QueueRescheduleRequest,
    TimeSlot,
)
from app.services import availability_service
from app.services.audit_service import log_action
from app.services.conflict_service import check_for_conflicts, times_overlap

settings = get_settings()
logger = logging.getLogger(__name__)

# Transiciones que solo se alcanzan mediante las operaciones de la cola
QUEUE_ONLY_TARGETS = {AppointmentStatus.RESCHEDULED}


# ── Helpers ──────────────────────────────────────────

def _snapshot(appt: Appointment) -> dict:
    return {
        "status": appt.status,
        "start_time": appt.start_time,
        "end_time": appt.end_time,
        "doctor_id": appt.doctor_id,
        "unit_id": appt.unit_id,
    }


async def _get_appointment(
    db: AsyncSession, appointment_id: UUID, principal: Principal
) -> Appointment:
    result = await db.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.organization_id == principal.organization_id,
        )
    )
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFoundException("Cita", code="APPOINTMENT_NOT_FOUND")
    return appointment


async def _doctor_exists(db: AsyncSession, doctor_id: UUID, organization_id: UUID) -> bool:
    result = await db.execute(
        select(Doctor.id).where(
            Doctor.id == doctor_id,
            Doctor.organization_id == organization_id,
            Doctor.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none() is not None


async def _unit_exists(
    db: AsyncSession, unit_id: UUID, clinic_id: UUID, organization_id: UUID
) -> bool:
    result = await db.execute(
        select(Unit.id).where(
            Unit.id == unit_id,
            Unit.clinic_id == clinic_id,
            Unit.organization_id == organization_id,
            Unit.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none() is not None


async def _patient_exists(db: AsyncSession, patient_id: UUID, organization_id: UUID) -> bool:
    result = await db.execute(
        select(Patient.id).where(
            Patient.id == patient_id,
            Patient.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def _require_doctor_available(db: AsyncSession, appointment: Appointment) -> None:
    if appointment.doctor_id is None:
        return
    if not await availability_service.is_available(
        db, appointment.doctor_id, appointment.start_time, appointment.end_time
    ):
        raise ConflictException(
            "El doctor no tiene disponibilidad en ese horario", code="DOCTOR_NOT_AVAILABLE"
        )


def _require_queue(appointment: Appointment) -> None:
    if appointment.status != AppointmentStatus.RESCHEDULING_QUEUE:
        raise InvalidStateException(
            f"La cita no está en la cola de reprogramación (estado '{appointment.status.value}')",
            code="APPOINTMENT_NOT_IN_QUEUE",
        )


# ── Alta de citas ────────────────────────────────────

async def _prepare(
    db: AsyncSession,
    data: AppointmentCreate,
    principal: Principal,
    exclude_ids: Iterable[UUID] = (),
) -> Appointment:
    """
    Validación → conflictos → doctor (existe y tiene una ventana disponible
    que cubre el horario) → unidad → paciente.
    Retorna la cita transitoria, todavía fuera de la sesión.
    `exclude_ids` saca citas del conjunto de comparación (la original al
    reprogramar desde la cola).
    """
    appointment = Appointment(
        organization_id=principal.organization_id,
        clinic_id=data.clinic_id,
        unit_id=data.unit_id,
        doctor_id=data.doctor_id,
        patient_id=data.patient_id,
        start_time=data.start_time,
        end_time=data.end_time,
        status=AppointmentStatus.SCHEDULED,
        treatment_type=data.treatment_type,
        notes=data.notes,
        created_by=principal.user_id,
    )
    appointment.validate()

    await check_for_conflicts(db, appointment, exclude_ids)

    if appointment.doctor_id is not None and not await _doctor_exists(
        db, appointment.doctor_id, principal.organization_id
    ):
        raise NotFoundException("Doctor", code="DOCTOR_NOT_FOUND")
    await _require_doctor_available(db, appointment)
    if not await _unit_exists(
        db, appointment.unit_id, appointment.clinic_id, principal.organization_id
    ):
        raise NotFoundException("Unidad", detail="Unidad no encontrada", code="UNIT_NOT_FOUND")
    if not await _patient_exists(db, appointment.patient_id, principal.organization_id):
        raise NotFoundException("Paciente", code="PATIENT_NOT_FOUND")
    return appointment


async def _insert(
    db: AsyncSession, appointment: Appointment, principal: Principal
) -> Appointment:
    db.add(appointment)
    await flush_or_conflict(
        db, "El horario ya fue ocupado por otra cita", "APPOINTMENT_CONFLICT"
    )
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="create",
        new_data=_snapshot(appointment),
    )
    logger.info(
        "Cita agendada: %s unidad=%s doctor=%s %s",
        appointment.id, appointment.unit_id, appointment.doctor_id,
        appointment.start_time.isoformat(),
    )
    return appointment


@retry_on_serialization_failure
async def schedule_appointment(
    db: AsyncSession, data: AppointmentCreate, principal: Principal
) -> Appointment:
    """Crea una cita nueva en estado scheduled."""
    appointment = await _prepare(db, data, principal)
    return await _insert(db, appointment, principal)


@retry_on_serialization_failure
async def reschedule_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentReschedule,
    principal: Principal,
) -> Appointment:
    """
    Cambia el horario de una cita scheduled/confirmed.
    La cita se excluye a sí misma de la verificación de conflictos.
    """
    appointment = await _get_appointment(db, appointment_id, principal)
    # Cambiar el horario no cambia el estado: solo se reprograman citas
    # scheduled/confirmed. Una cita en cola usa reschedule_from_queue.
    if appointment.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
        raise InvalidStateException(
            f"No se puede reprogramar una cita en estado '{appointment.status.value}'",
            code="INVALID_STATUS_TRANSITION",
        )

    # Candidata transitoria: la cita persistida no se toca hasta validar todo
    candidate = Appointment(
        id=appointment.id,
        organization_id=appointment.organization_id,
        clinic_id=appointment.clinic_id,
        unit_id=appointment.unit_id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        status=appointment.status,
        start_time=data.start_time,
        end_time=data.end_time,
    )
    candidate.validate()
    await check_for_conflicts(db, candidate)
    await _require_doctor_available(db, candidate)

    old_data = _snapshot(appointment)
    appointment.start_time = data.start_time
    appointment.end_time = data.end_time
    await flush_or_conflict(
        db, "El horario ya fue ocupado por otra cita", "APPOINTMENT_CONFLICT"
    )
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="reschedule",
        old_data=old_data,
        new_data=_snapshot(appointment),
    )
    return appointment


async def get_appointment(
    db: AsyncSession, appointment_id: UUID, principal: Principal
) -> Appointment:
    return await _get_appointment(db, appointment_id, principal)


async def get_by_doctor_and_date(
    db: AsyncSession, doctor_id: UUID, target_date: date
) -> list[Appointment]:
    """Citas activas del doctor que intersectan el día (UTC)."""
    day_start = datetime.combine(target_date, time.min).replace(tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)
    result = await db.execute(
        select(Appointment)
        .where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time < day_end,
            Appointment.end_time > day_start,
        )
        .order_by(Appointment.start_time)
    )
    return list(result.scalars().all())


async def list_appointments(
    db: AsyncSession,
    principal: Principal,
    *,
    page: int = 1,
    size: int = 20,
    clinic_id: UUID | None = None,
    doctor_id: UUID | None = None,
    unit_id: UUID | None = None,
    status: AppointmentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> AppointmentListResponse:
    """Lista citas con paginación y filtros."""
    query = select(Appointment).where(
        Appointment.organization_id == principal.organization_id
    )

    # Filtros
    if clinic_id:
        query = query.where(Appointment.clinic_id == clinic_id)
    if doctor_id:
        query = query.where(Appointment.doctor_id == doctor_id)
    if unit_id:
        query = query.where(Appointment.unit_id == unit_id)
    if status:
        query = query.where(Appointment.status == status)
    if date_from:
        start_dt = datetime.combine(date_from, time.min).replace(tzinfo=timezone.utc)
        query = query.where(Appointment.start_time >= start_dt)
    if date_to:
        end_dt = datetime.combine(date_to, time.max).replace(tzinfo=timezone.utc)
        query = query.where(Appointment.start_time <= end_dt)

    count_query = select(func.count()).select_from(
        query.with_only_columns(Appointment.id).subquery()
    )
    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * size
    query = query.order_by(Appointment.start_time).offset(offset).limit(size)
    result = await db.execute(query)
    appointments = result.scalars().all()

    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(a) for a in appointments],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── State machine ────────────────────────────────────

@retry_on_serialization_failure
async def change_status(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentStatusChange,
    principal: Principal,
) -> Appointment:
    """
    Cambia el estado de una cita usando la state machine.
    Las salidas de la cola (cancelar/reprogramar) tienen sus propias operaciones.
    """
    if data.status == AppointmentStatus.RESCHEDULING_QUEUE:
        return await _move_to_queue(db, appointment_id, data.reason, principal)

    appointment = await _get_appointment(db, appointment_id, principal)

    if (
        data.status in QUEUE_ONLY_TARGETS
        or appointment.status == AppointmentStatus.RESCHEDULING_QUEUE
    ):
        raise InvalidStateException(
            "Use las operaciones de la cola de reprogramación para esta transición",
            code="INVALID_STATUS_TRANSITION",
        )

    if not is_valid_transition(appointment.status, data.status):
        valid = VALID_TRANSITIONS.get(appointment.status, [])
        raise InvalidStateException(
            f"No se puede cambiar de '{appointment.status.value}' a '{data.status.value}'. "
            f"Transiciones válidas: {', '.join(s.value for s in valid) or 'ninguna'}",
            code="INVALID_STATUS_TRANSITION",
        )

    old_status = appointment.status
    appointment.status = data.status
    if data.status == AppointmentStatus.CANCELLED:
        appointment.cancellation_reason = data.reason

    await db.flush()
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="status_change",
        old_data={"status": old_status},
        new_data={"status": data.status, "reason": data.reason},
    )
    return appointment


# ── Cola de reprogramación ───────────────────────────

async def _move_to_queue(
    db: AsyncSession,
    appointment_id: UUID,
    reason: str | None,
    principal: Principal,
) -> Appointment:
    appointment = await _get_appointment(db, appointment_id, principal)
    if not is_valid_transition(appointment.status, AppointmentStatus.RESCHEDULING_QUEUE):
        raise InvalidStateException(
            f"No se puede enviar a la cola una cita en estado '{appointment.status.value}'",
            code="INVALID_STATUS_TRANSITION",
        )

    old_status = appointment.status
    appointment.status = AppointmentStatus.RESCHEDULING_QUEUE
    appointment.moved_to_queue_at = utcnow()
    appointment.snoozed_until = None

    await db.flush()
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="move_to_queue",
        old_data={"status": old_status},
        new_data={"status": appointment.status, "reason": reason},
    )
    logger.info("Cita %s enviada a la cola de reprogramación", appointment.id)
    return appointment


@retry_on_serialization_failure
async def move_to_queue(
    db: AsyncSession,
    appointment_id: UUID,
    reason: str | None,
    principal: Principal,
) -> Appointment:
    """Envía una cita activa a la cola (p. ej. el doctor ya no puede atenderla)."""
    return await _move_to_queue(db, appointment_id, reason, principal)


@retry_on_serialization_failure
async def move_unavailable_to_queue(
    db: AsyncSession,
    data: BulkMoveToQueueRequest,
    principal: Principal,
) -> list[UUID]:
    """
    Envía a la cola todas las citas scheduled/confirmed de un doctor o una
    unidad que se solapan con el rango indicado.
    """
    if data.doctor_id is None and data.unit_id is None:
        raise ValidationException(
            "Indique doctor_id o unit_id", code="MISSING_REQUIRED_FIELD"
        )
    if data.end_time <= data.start_time:
        raise ValidationException(
            "La hora de fin debe ser posterior a la de inicio",
            code="END_TIME_BEFORE_START_TIME",
        )

    resource_filters = []
    if data.doctor_id is not None:
        resource_filters.append(Appointment.doctor_id == data.doctor_id)
    if data.unit_id is not None:
        resource_filters.append(Appointment.unit_id == data.unit_id)

    result = await db.execute(
        select(Appointment.id)
        .where(
            Appointment.organization_id == principal.organization_id,
            or_(*resource_filters),
            Appointment.status.in_([AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]),
            Appointment.start_time < data.end_time,
            Appointment.end_time > data.start_time,
        )
        .order_by(Appointment.start_time)
    )
    ids = list(result.scalars().all())

    for appointment_id in ids:
        await _move_to_queue(db, appointment_id, data.reason, principal)

    logger.info("%d citas enviadas a la cola de reprogramación", len(ids))
    return ids


async def get_rescheduling_queue(
    db: AsyncSession,
    principal: Principal,
    *,
    clinic_id: UUID | None = None,
    doctor_id: UUID | None = None,
    sort: Literal["oldest", "newest"] = "oldest",
    page: int = 1,
    size: int = 20,
) -> QueueListResponse:
    """
    Lista las citas en cola, sin las pospuestas (snoozed_until en el futuro).
    Por defecto las más antiguas primero.
    """
    size = max(1, min(size, settings.QUEUE_PAGE_MAX))
    now = utcnow()

    query = select(Appointment).where(
        Appointment.organization_id == principal.organization_id,
        Appointment.status == AppointmentStatus.RESCHEDULING_QUEUE,
        or_(Appointment.snoozed_until.is_(None), Appointment.snoozed_until <= now),
    )
    if clinic_id:
        query = query.where(Appointment.clinic_id == clinic_id)
    if doctor_id:
        query = query.where(Appointment.doctor_id == doctor_id)

    count_query = select(func.count()).select_from(
        query.with_only_columns(Appointment.id).subquery()
    )
    total = (await db.execute(count_query)).scalar() or 0

    order = Appointment.moved_to_queue_at.desc() if sort == "newest" else Appointment.moved_to_queue_at.asc()
    query = query.order_by(order, Appointment.start_time).offset((page - 1) * size).limit(size)
    result = await db.execute(query)

    items = []
    for appt in result.scalars().all():
        moved_at = ensure_utc(appt.moved_to_queue_at)
        days = (now - moved_at).days if moved_at else 0
        item = QueueItemResponse.model_validate(appt)
        item.days_in_queue = max(days, 0)
        items.append(item)

    return QueueListResponse(
        items=items,
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


@retry_on_serialization_failure
async def snooze_in_queue(
    db: AsyncSession,
    appointment_id: UUID,
    snoozed_until: datetime,
    principal: Principal,
) -> Appointment:
    """Oculta una cita de la cola hasta la fecha indicada."""
    appointment = await _get_appointment(db, appointment_id, principal)
    _require_queue(appointment)

    snoozed_until = ensure_utc(snoozed_until)
    if snoozed_until <= utcnow():
        raise ValidationException(
            "La fecha de posposición debe ser futura", code="INVALID_SNOOZE"
        )

    appointment.snoozed_until = snoozed_until
    await db.flush()
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="snooze",
        new_data={"snoozed_until": snoozed_until},
    )
    return appointment


@retry_on_serialization_failure
async def cancel_from_queue(
    db: AsyncSession,
    appointment_id: UUID,
    reason: str,
    notes: str | None,
    principal: Principal,
) -> Appointment:
    """Cancela una cita en cola. El motivo queda como "motivo - notas"."""
    appointment = await _get_appointment(db, appointment_id, principal)
    _require_queue(appointment)

    full_reason = f"{reason} - {notes}" if notes else reason
    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancellation_reason = full_reason
    await db.flush()
    await db.refresh(appointment)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=appointment.id,
        action="cancel_from_queue",
        old_data={"status": AppointmentStatus.RESCHEDULING_QUEUE},
        new_data={"status": appointment.status, "reason": full_reason},
    )
    logger.info("Cita %s cancelada desde la cola", appointment.id)
    return appointment


@retry_on_serialization_failure
async def reschedule_from_queue(
    db: AsyncSession,
    appointment_id: UUID,
    data: QueueRescheduleRequest,
    principal: Principal,
) -> tuple[Appointment, Appointment]:
    """
    Crea una cita nueva para una cita en cola y, solo si se pudo crear,
    marca la original como rescheduled con referencia a la nueva.
    La original nunca se elimina; si la nueva falla, queda intacta en cola.
    """
    original = await _get_appointment(db, appointment_id, principal)
    _require_queue(original)

    new_data = AppointmentCreate(
        clinic_id=original.clinic_id,
        unit_id=data.unit_id or original.unit_id,
        doctor_id=data.doctor_id or original.doctor_id,
        patient_id=original.patient_id,
        start_time=data.start_time,
        end_time=data.end_time,
        treatment_type=data.treatment_type or original.treatment_type,
        notes=data.notes if data.notes is not None else original.notes,
    )
    candidate = await _prepare(db, new_data, principal, exclude_ids=[original.id])

    # La original deja de ser activa antes del insert: la restricción de
    # exclusión no la compara contra su reemplazo
    original.status = AppointmentStatus.RESCHEDULED
    new_appointment = await _insert(db, candidate, principal)

    original.rescheduled_to_appointment_id = new_appointment.id
    await db.flush()
    await db.refresh(original)

    await log_action(
        db,
        organization_id=principal.organization_id,
        user_id=principal.user_id,
        entity="appointment",
        entity_id=original.id,
        action="reschedule_from_queue",
        old_data={"status": AppointmentStatus.RESCHEDULING_QUEUE},
        new_data={"status": original.status, "new_appointment_id": new_appointment.id},
    )
    logger.info("Cita %s reprogramada como %s", original.id, new_appointment.id)
    return original, new_appointment


# ── Horarios libres ──────────────────────────────────

class SlotSequence:
    """
    Secuencia perezosa, finita y reiniciable de horarios libres.

    Cada iteración recorre las ventanas en el orden recibido y avanza de a
    `slot_minutes` desde el inicio de la ventana mientras inicio+duración
    no pase del fin. Un horario se emite solo si no se solapa con ninguna
    cita ocupada.
    """

    def __init__(
        self,
        windows: list[tuple[datetime, datetime]],
        busy: list[tuple[datetime, datetime]],
        slot_minutes: int,
    ):
        self._windows = list(windows)
        self._busy = list(busy)
        self.slot_minutes = slot_minutes
        self._delta = timedelta(minutes=slot_minutes)

    def __iter__(self) -> Iterator[TimeSlot]:
        for window_start, window_end in self._windows:
            current = window_start
            while current + self._delta <= window_end:
                slot_end = current + self._delta
                if not any(
                    times_overlap(current, slot_end, busy_start, busy_end)
                    for busy_start, busy_end in self._busy
                ):
                    yield TimeSlot(start_time=current, end_time=slot_end)
                current += self._delta


async def get_available_slots(
    db: AsyncSession,
    doctor_id: UUID,
    target_date: date,
    principal: Principal,
    slot_minutes: int | None = None,
) -> SlotSequence:
    """
    Calcula los horarios libres de un doctor en una fecha.

    1. Lee las ventanas del doctor para la fecha (ignora las no disponibles)
    2. Lee sus citas activas del día
    3. Devuelve la secuencia perezosa de horarios sin solapamiento
    """
    if slot_minutes is None:
        slot_minutes = settings.DEFAULT_SLOT_MINUTES
    if slot_minutes <= 0:
        raise ValidationException(
            "La duración del horario debe ser positiva", code="INVALID_SLOT_DURATION"
        )
    if not await _doctor_exists(db, doctor_id, principal.organization_id):
        raise NotFoundException("Doctor", code="DOCTOR_NOT_FOUND")

    windows = [
        (
            datetime.combine(target_date, w.start_time).replace(tzinfo=timezone.utc),
            datetime.combine(target_date, w.end_time).replace(tzinfo=timezone.utc),
        )
        for w in await availability_service.get_by_doctor_and_date(db, doctor_id, target_date)
        if w.is_available
    ]
    busy = [
        (ensure_utc(a.start_time), ensure_utc(a.end_time))
        for a in await get_by_doctor_and_date(db, doctor_id, target_date)
    ]
    return SlotSequence(windows, busy, slot_minutes)
