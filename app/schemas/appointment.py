"""
Schemas para Appointment — citas, cola de reprogramación y horarios libres.

El orden fin > inicio no se valida aquí: lo valida Appointment.validate()
para responder con el código de error del dominio.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.timeutils import ensure_utc
from app.models.appointment import AppointmentStatus


class _UTCTimesMixin(BaseModel):
    """Normaliza start_time/end_time a UTC (naive se asume UTC)."""

    @field_validator("start_time", "end_time", check_fields=False)
    @classmethod
    def to_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


# ── CRUD de Citas ────────────────────────────────────

class AppointmentCreate(_UTCTimesMixin):
    clinic_id: UUID
    unit_id: UUID
    patient_id: UUID
    doctor_id: UUID | None = None
    start_time: datetime
    end_time: datetime
    treatment_type: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)


class AppointmentReschedule(_UTCTimesMixin):
    """Nuevo horario para una cita activa."""
    start_time: datetime
    end_time: datetime


class AppointmentStatusChange(BaseModel):
    """Schema para cambiar el estado de una cita."""
    status: AppointmentStatus
    reason: str | None = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    id: UUID
    organization_id: UUID
    clinic_id: UUID
    unit_id: UUID
    patient_id: UUID
    doctor_id: UUID | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    treatment_type: str | None = None
    notes: str | None = None

    moved_to_queue_at: datetime | None = None
    snoozed_until: datetime | None = None
    cancellation_reason: str | None = None
    rescheduled_to_appointment_id: UUID | None = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Respuesta paginada de listado de citas."""
    items: list[AppointmentResponse]
    total: int
    page: int
    size: int
    pages: int


# ── Cola de reprogramación ───────────────────────────

class MoveToQueueRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class BulkMoveToQueueRequest(_UTCTimesMixin):
    """Envía a la cola las citas activas de un doctor o unidad en un rango."""
    doctor_id: UUID | None = None
    unit_id: UUID | None = None
    start_time: datetime
    end_time: datetime
    reason: str | None = Field(None, max_length=500)


class BulkMoveToQueueResponse(BaseModel):
    moved_ids: list[UUID]
    count: int


class QueueCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=300)
    notes: str | None = Field(None, max_length=190)


class QueueRescheduleRequest(_UTCTimesMixin):
    """
    Datos del nuevo horario; los omitidos se copian de la cita original.
    `unit_id` y `doctor_id` en None significan "el de la original": desde la
    cola se puede cambiar de doctor pero no dejar la cita sin doctor.
    """
    start_time: datetime
    end_time: datetime
    unit_id: UUID | None = None
    doctor_id: UUID | None = None
    treatment_type: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)


class QueueSnoozeRequest(BaseModel):
    snoozed_until: datetime

    @field_validator("snoozed_until")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class QueueRescheduleResponse(BaseModel):
    original: AppointmentResponse
    new_appointment: AppointmentResponse


class QueueItemResponse(AppointmentResponse):
    days_in_queue: int = 0


class QueueListResponse(BaseModel):
    items: list[QueueItemResponse]
    total: int
    page: int
    size: int
    pages: int


# ── Disponibilidad / Slots ───────────────────────────

class TimeSlot(BaseModel):
    start_time: datetime
    end_time: datetime


class AvailableSlotsResponse(BaseModel):
    doctor_id: UUID
    date: date
    slot_minutes: int
    slots: list[TimeSlot]
