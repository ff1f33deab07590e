"""
Modelo Reconciliation — Corte de caja por (sesión, método de pago, moneda).

    deposited_cents   = actual_amount_cents - float_left_cents
    discrepancy_cents = actual_amount_cents - expected_amount_cents
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
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.timeutils import utcnow
from app.database import Base
from app.models.ledger import Currency, PaymentMethod


class ReconciliationStatus(str, enum.Enum):
    PENDING = "pending"
    CLOSED = "closed"
    DISPUTED = "disputed"


class Reconciliation(Base):
    __tablename__ = "reconciliations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    cash_session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("cash_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, values_callable=lambda e: [x.value for x in e],
             native_enum=False, length=20),
        nullable=False,
    )
    currency: Mapped[Currency] = mapped_column(
        Enum(Currency, values_callable=lambda e: [x.value for x in e],
             native_enum=False, length=3),
        nullable=False,
    )
    reconciled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    reconciled_by_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )

    # ── Montos (centavos) ────────────────────────────
    expected_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actual_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    float_left_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deposited_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discrepancy_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    envelope_id: Mapped[str | None] = mapped_column(
        String(100), comment="Identificador del sobre de depósito"
    )
    status: Mapped[ReconciliationStatus] = mapped_column(
        Enum(ReconciliationStatus, values_callable=lambda e: [x.value for x in e],
             native_enum=False, length=20),
        nullable=False, default=ReconciliationStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "cash_session_id", "payment_method", "currency",
            name="uq_reconciliation_session_method_currency",
        ),
        Index("idx_recon_clinic_reconciled", "clinic_id", "reconciled_at"),
    )

    @property
    def has_discrepancy(self) -> bool:
        return self.discrepancy_cents != 0

    @property
    def is_overage(self) -> bool:
        return self.discrepancy_cents > 0

    @property
    def is_shortage(self) -> bool:
        return self.discrepancy_cents < 0

    def __repr__(self) -> str:
        return (
            f"<Reconciliation {self.payment_method.value}/{self.currency.value} "
            f"esperado={self.expected_amount_cents} real={self.actual_amount_cents}>"
        )
