"""
Modelo DoctorAvailability — Ventanas de atención de un doctor por fecha.

Lo administra el módulo de disponibilidad; la agenda solo lo lee para
generar los horarios libres.
"""

import datetime as dt
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Time,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class DoctorAvailability(Base):
    __tablename__ = "doctor_availability"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=False
    )

    # ── Ventana horaria ──────────────────────────────
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
        comment="False = bloqueo (vacaciones, ausencia)"
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("idx_availability_doctor_date", "doctor_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<DoctorAvailability {self.doctor_id} {self.date} {self.start_time}-{self.end_time}>"
