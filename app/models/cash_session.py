"""
Modelo CashSession — Apertura de caja.

Periodo durante el cual un usuario es responsable del cajón de efectivo de
una clínica. Invariante: a lo sumo una sesión abierta por (usuario, clínica),
garantizada por un índice único parcial.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base


class CashSessionStatus(str, enum.Enum):
    """Estado de la sesión de caja."""
    OPEN = "open"
    CLOSED = "closed"


class CashSessionOpeningType(str, enum.Enum):
    """manual = abierta por el usuario; auto = abierta al cobrar en efectivo."""
    MANUAL = "manual"
    AUTO = "auto"


class CashSession(Base):
    __tablename__ = "cash_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
        comment="Usuario que abrió la caja"
    )

    status: Mapped[CashSessionStatus] = mapped_column(
        Enum(CashSessionStatus, values_callable=lambda e: [x.value for x in e],
             native_enum=False, length=20),
        nullable=False, default=CashSessionStatus.OPEN
    )
    opening_type: Mapped[CashSessionOpeningType] = mapped_column(
        Enum(CashSessionOpeningType, values_callable=lambda e: [x.value for x in e],
             native_enum=False, length=20),
        nullable=False, default=CashSessionOpeningType.MANUAL
    )
    starting_float_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0,
        comment="Efectivo en cajón al abrir, para dar cambio"
    )
    notes: Mapped[str | None] = mapped_column(Text)

    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="NULL mientras la sesión está abierta"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Índices ──────────────────────────────────────
    __table_args__ = (
        Index(
            "uq_cash_session_open_per_user_clinic",
            "user_id", "clinic_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        Index("idx_sessions_user_clinic_status", "user_id", "clinic_id", "status"),
        Index("idx_sessions_clinic_status_opened", "clinic_id", "status", "opened_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == CashSessionStatus.OPEN and self.closed_at is None

    def __repr__(self) -> str:
        return f"<CashSession {self.id} [{self.status.value}] fondo={self.starting_float_cents}>"
