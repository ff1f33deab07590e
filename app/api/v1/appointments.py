"""
Endpoints de citas: alta, reprogramación, cambio de estado
y cola de reprogramación.
"""

from datetime import date
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.database import get_db
from app.models.appointment import AppointmentStatus
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusChange,
    BulkMoveToQueueRequest,
    BulkMoveToQueueResponse,
    MoveToQueueRequest,
    QueueCancelRequest,
    QueueListResponse,
    QueueRescheduleRequest,
    QueueRescheduleResponse,
    QueueSnoozeRequest,
)
from app.services import scheduling_service

router = APIRouter()


# ── Cola de reprogramación ───────────────────────────
# Rutas fijas antes de /{appointment_id}

@router.get("/queue", response_model=QueueListResponse)
async def list_queue(
    clinic_id: UUID | None = Query(None, description="Filtrar por clínica"),
    doctor_id: UUID | None = Query(None, description="Filtrar por doctor"),
    sort: Literal["oldest", "newest"] = Query("oldest"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1),
    principal: Principal = Depends(require_permission("appointment", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Citas en cola (sin las pospuestas), las más antiguas primero."""
    return await scheduling_service.get_rescheduling_queue(
        db,
        principal,
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        sort=sort,
        page=page,
        size=size,
    )


@router.post("/queue/bulk", response_model=BulkMoveToQueueResponse)
async def bulk_move_to_queue(
    data: BulkMoveToQueueRequest,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    """Envía a la cola las citas de un doctor o unidad dentro de un rango."""
    moved = await scheduling_service.move_unavailable_to_queue(db, data, principal)
    return BulkMoveToQueueResponse(moved_ids=moved, count=len(moved))


@router.post("/{appointment_id}/queue", response_model=AppointmentResponse)
async def move_to_queue(
    appointment_id: UUID,
    data: MoveToQueueRequest,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    return await scheduling_service.move_to_queue(db, appointment_id, data.reason, principal)


@router.post("/{appointment_id}/queue/cancel", response_model=AppointmentResponse)
async def cancel_from_queue(
    appointment_id: UUID,
    data: QueueCancelRequest,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    """Cancela una cita que está en la cola."""
    return await scheduling_service.cancel_from_queue(
        db, appointment_id, data.reason, data.notes, principal
    )


@router.post(
    "/{appointment_id}/queue/reschedule",
    response_model=QueueRescheduleResponse,
    status_code=201,
)
async def reschedule_from_queue(
    appointment_id: UUID,
    data: QueueRescheduleRequest,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Crea la cita nueva y marca la original como reprogramada.
    Si la nueva choca con otra cita, la original queda intacta en la cola.
    """
    original, new_appointment = await scheduling_service.reschedule_from_queue(
        db, appointment_id, data, principal
    )
    return QueueRescheduleResponse(
        original=AppointmentResponse.model_validate(original),
        new_appointment=AppointmentResponse.model_validate(new_appointment),
    )


@router.post("/{appointment_id}/queue/snooze", response_model=AppointmentResponse)
async def snooze_in_queue(
    appointment_id: UUID,
    data: QueueSnoozeRequest,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    return await scheduling_service.snooze_in_queue(
        db, appointment_id, data.snoozed_until, principal
    )


# ── Citas ────────────────────────────────────────────

@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    clinic_id: UUID | None = Query(None, description="Filtrar por clínica"),
    doctor_id: UUID | None = Query(None, description="Filtrar por doctor"),
    unit_id: UUID | None = Query(None, description="Filtrar por unidad"),
    status: AppointmentStatus | None = Query(None, description="Filtrar por estado"),
    date_from: date | None = Query(None, description="Desde fecha (YYYY-MM-DD)"),
    date_to: date | None = Query(None, description="Hasta fecha (YYYY-MM-DD)"),
    principal: Principal = Depends(require_permission("appointment", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Lista citas de la organización con filtros y paginación."""
    return await scheduling_service.list_appointments(
        db,
        principal,
        page=page,
        size=size,
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        unit_id=unit_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
    )


@router.post("", response_model=AppointmentResponse, status_code=201)
async def schedule_appointment(
    data: AppointmentCreate,
    principal: Principal = Depends(require_permission("appointment", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Agenda una cita. Rechaza con 409 si el doctor o la unidad
    ya tienen una cita activa que se solape.
    """
    return await scheduling_service.schedule_appointment(db, data, principal)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: UUID,
    principal: Principal = Depends(require_permission("appointment", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await scheduling_service.get_appointment(db, appointment_id, principal)


@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    """Cambia el horario de una cita agendada o confirmada."""
    return await scheduling_service.reschedule_appointment(db, appointment_id, data, principal)


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def change_status(
    appointment_id: UUID,
    data: AppointmentStatusChange,
    principal: Principal = Depends(require_permission("appointment", "update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Cambia el estado de una cita:
    scheduled → confirmed | completed | cancelled | rescheduling_queue
    confirmed → completed | cancelled | rescheduling_queue
    """
    return await scheduling_service.change_status(db, appointment_id, data, principal)
