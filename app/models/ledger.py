"""
Modelos AppointmentAccount + AppointmentAccountEntry — Libro contable por cita.

El libro es INSERT-only: una entrada nunca se actualiza ni se elimina.
Para revertir o ajustar un movimiento se inserta una entrada `correction`
enlazada vía `corrects_entry_id`. El saldo es siempre la suma de los
montos con signo de todas las entradas de la cuenta.

Montos en centavos (enteros con signo), nunca cero:
    service_charge, payment   → positivo
    discount, refund          → negativo
    correction                → signo opuesto a la entrada que corrige
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.timeutils import utcnow
from app.database import Base
from app.models.doctor import DoctorType


# ── Enums ─────────────────────────────────────────────


class EntryType(str, enum.Enum):
    """Tipo de movimiento del libro."""
    SERVICE_CHARGE = "service_charge"
    DISCOUNT = "discount"
    PAYMENT = "payment"
    REFUND = "refund"
    CORRECTION = "correction"


class Currency(str, enum.Enum):
    MXN = "MXN"
    USD = "USD"


class PaymentMethod(str, enum.Enum):
    """Método de pago del movimiento."""
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


class AmountSign(str, enum.Enum):
    """Regla de signo del monto según el tipo de entrada."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    OPPOSITE_OF_CORRECTED = "opposite_of_corrected"


SIGN_RULES: dict[EntryType, AmountSign] = {
    EntryType.SERVICE_CHARGE: AmountSign.POSITIVE,
    EntryType.PAYMENT: AmountSign.POSITIVE,
    EntryType.DISCOUNT: AmountSign.NEGATIVE,
    EntryType.REFUND: AmountSign.NEGATIVE,
    EntryType.CORRECTION: AmountSign.OPPOSITE_OF_CORRECTED,
}


def _enum_values(e):
    return [x.value for x in e]


# ── AppointmentAccount ────────────────────────────────


class AppointmentAccount(Base):
    """Cuenta 1:1 con una cita; se crea al registrar la primera entrada."""

    __tablename__ = "appointment_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id"), nullable=False, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Relaciones ───────────────────────────────────
    appointment: Mapped["Appointment"] = relationship("Appointment")  # noqa: F821
    entries: Mapped[list["AppointmentAccountEntry"]] = relationship(
        "AppointmentAccountEntry",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="AppointmentAccountEntry.created_at",
    )

    __table_args__ = (
        Index("idx_appointment_accounts_org_created", "organization_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AppointmentAccount {self.id} cita={self.appointment_id}>"


# ── AppointmentAccountEntry ───────────────────────────


class AppointmentAccountEntry(Base):
    """Fila inmutable del libro."""

    __tablename__ = "appointment_account_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    appointment_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointment_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )

    # ── Datos del movimiento ─────────────────────────
    type: Mapped[EntryType] = mapped_column(
        Enum(EntryType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    currency: Mapped[Currency] = mapped_column(
        Enum(Currency, values_callable=_enum_values, native_enum=False, length=3),
        nullable=False,
    )
    amount_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False,
        comment="Monto con signo en centavos"
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    # ── Campos condicionales ─────────────────────────
    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        Enum(PaymentMethod, values_callable=_enum_values, native_enum=False, length=20),
        comment="Obligatorio si type=payment"
    )
    exchange_rate_used: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 4), comment="Tipo de cambio USD→MXN, obligatorio si currency=USD"
    )
    doctor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doctors.id")
    )
    doctor_type: Mapped[DoctorType | None] = mapped_column(
        Enum(DoctorType, values_callable=_enum_values, native_enum=False, length=20),
    )
    commission_pct: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), comment="Comisión del doctor interno"
    )
    external_doctor_fee_cents: Mapped[int | None] = mapped_column(
        BigInteger, comment="Honorario fijo del doctor externo"
    )
    corrects_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointment_account_entries.id")
    )
    is_sensitive: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="Oculta honorarios externos en vistas del paciente"
    )

    # ── Campos opcionales ────────────────────────────
    service_id: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int | None] = mapped_column(Integer, default=1)
    unit_price_cents: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)
    cash_session_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("cash_sessions.id")
    )

    # ── Relaciones ───────────────────────────────────
    account: Mapped["AppointmentAccount"] = relationship(
        "AppointmentAccount", back_populates="entries"
    )

    # ── Índices ──────────────────────────────────────
    __table_args__ = (
        CheckConstraint("amount_cents <> 0", name="amount_not_zero"),
        Index("idx_entries_account_created", "appointment_account_id", "created_at"),
        Index("idx_entries_doctor_created", "doctor_id", "created_at"),
        Index(
            "idx_entries_session_type_payment",
            "cash_session_id", "type", "payment_method", "currency",
        ),
        Index("idx_entries_creator_created", "created_by_user_id", "created_at"),
        Index("idx_entries_corrects", "corrects_entry_id"),
    )

    def __repr__(self) -> str:
        return f"<AppointmentAccountEntry {self.type.value} {self.amount_cents} {self.currency.value}>"
