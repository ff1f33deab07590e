"""
Modelo Doctor — Odontólogos de la organización.

Un doctor interno cobra comisión sobre el servicio; uno externo cobra
honorarios fijos por servicio.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Enum, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class DoctorType(str, enum.Enum):
    """Relación contractual del doctor con la clínica."""
    INTERNAL = "internal"
    EXTERNAL = "external"


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(100))
    doctor_type: Mapped[DoctorType] = mapped_column(
        Enum(DoctorType, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=DoctorType.INTERNAL,
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Doctor {self.full_name} [{self.doctor_type.value}]>"
