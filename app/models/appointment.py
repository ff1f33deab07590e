"""
Modelo Appointment — Citas dentales con state machine de estados.

Estados válidos y transiciones:
    scheduled → confirmed → completed
    scheduled → completed
    scheduled → cancelled
    confirmed → cancelled
    scheduled | confirmed → rescheduling_queue
    rescheduling_queue → cancelled     (solo vía cola)
    rescheduling_queue → rescheduled   (solo vía cola, enlaza la nueva cita)

Una cita nunca se elimina: sale de la agenda por cancelación o
reprogramación.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.exceptions import ValidationException
from app.database import Base


class AppointmentStatus(str, enum.Enum):
    """Estados de una cita."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULING_QUEUE = "rescheduling_queue"
    RESCHEDULED = "rescheduled"


# Estados que ocupan agenda (participan en la detección de conflictos)
ACTIVE_STATUSES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULING_QUEUE,
})


# ── Transiciones válidas de la state machine ─────────
VALID_TRANSITIONS: dict[AppointmentStatus, list[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULING_QUEUE,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULING_QUEUE,
    ],
    AppointmentStatus.RESCHEDULING_QUEUE: [
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    ],
    # Estados terminales: no tienen transiciones
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.CANCELLED: [],
    AppointmentStatus.RESCHEDULED: [],
}


def is_valid_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    """Verifica si una transición de estado es válida."""
    return new in VALID_TRANSITIONS.get(current, [])


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("units.id"), nullable=False
    )
    doctor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False
    )

    # ── Datos de la cita ─────────────────────────────
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    treatment_type: Mapped[str | None] = mapped_column(
        String(100), comment="Limpieza, endodoncia, ortodoncia, etc."
    )
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Cola de reprogramación ───────────────────────
    moved_to_queue_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    snoozed_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Oculta la cita de la cola hasta esta fecha"
    )
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    rescheduled_to_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id"),
        comment="Cita nueva creada al reprogramar desde la cola"
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Relaciones ───────────────────────────────────
    doctor: Mapped["Doctor"] = relationship("Doctor")  # noqa: F821
    patient: Mapped["Patient"] = relationship("Patient")  # noqa: F821
    unit: Mapped["Unit"] = relationship("Unit")  # noqa: F821

    # ── Índices para consultas frecuentes ────────────
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_appointment_time_range"),
        Index("idx_appointment_clinic_date", "clinic_id", "start_time"),
        Index("idx_appointment_doctor_date", "doctor_id", "start_time"),
        Index("idx_appointment_unit_date", "unit_id", "start_time"),
        Index("idx_appointment_status", "clinic_id", "status"),
        Index("idx_appointment_queue", "status", "moved_to_queue_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def validate(self) -> None:
        """
        Valida la cita antes de persistirla.
        Lanza ValidationException con el primer problema encontrado.
        """
        if self.start_time is None or self.end_time is None:
            raise ValidationException(
                "La hora de inicio y fin son obligatorias",
                code="INVALID_APPOINTMENT_TIME",
            )
        if self.end_time <= self.start_time:
            raise ValidationException(
                "La hora de fin debe ser posterior a la de inicio",
                code="END_TIME_BEFORE_START_TIME",
            )
        for field in ("organization_id", "clinic_id", "unit_id", "patient_id"):
            if getattr(self, field) is None:
                raise ValidationException(
                    f"Campo obligatorio: {field}",
                    code="MISSING_REQUIRED_FIELD",
                )
        if self.status is not None and not isinstance(self.status, AppointmentStatus):
            try:
                self.status = AppointmentStatus(self.status)
            except ValueError:
                raise ValidationException(
                    f"Estado de cita inválido: {self.status}",
                    code="INVALID_STATUS",
                )

    def __repr__(self) -> str:
        return f"<Appointment {self.id} [{self.status.value}] {self.start_time}>"
