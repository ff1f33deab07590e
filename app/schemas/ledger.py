"""
Schemas del libro contable por cita.

El detalle de un cargo por servicio es una unión discriminada por
`doctor_type`: el doctor interno lleva comisión, el externo honorario fijo.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.doctor import DoctorType
from app.models.ledger import Currency, EntryType, PaymentMethod


# ── Detalle de cargo por servicio ─────────────────────

class InternalDoctorCharge(BaseModel):
    doctor_type: Literal["internal"]
    commission_pct: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)


class ExternalDoctorCharge(BaseModel):
    doctor_type: Literal["external"]
    external_doctor_fee_cents: int = Field(..., ge=0)


ServiceChargeDetail = Annotated[
    Union[InternalDoctorCharge, ExternalDoctorCharge],
    Field(discriminator="doctor_type"),
]


# ── Entradas ──────────────────────────────────────────

class EntryCreate(BaseModel):
    """Request para registrar una entrada en la cuenta de una cita."""
    appointment_id: UUID
    account_id: UUID | None = None
    type: EntryType
    currency: Currency = Currency.MXN
    amount_cents: int = Field(..., description="Monto con signo en centavos")
    description: str = Field(..., min_length=1, max_length=2000)

    payment_method: PaymentMethod | None = None
    exchange_rate_used: Decimal | None = Field(None, gt=0, max_digits=10, decimal_places=4)
    doctor_id: UUID | None = None
    service_charge: ServiceChargeDetail | None = None
    corrects_entry_id: UUID | None = None

    service_id: str | None = Field(None, max_length=255)
    quantity: int | None = Field(None, ge=0)
    unit_price_cents: int | None = None
    notes: str | None = Field(None, max_length=2000)
    cash_session_id: UUID | None = None


class CorrectionCreate(BaseModel):
    """Reversión total de una entrada existente."""
    description: str = Field(..., min_length=1, max_length=2000)
    notes: str | None = Field(None, max_length=2000)


class EntryResponse(BaseModel):
    id: UUID
    appointment_account_id: UUID
    type: EntryType
    currency: Currency
    amount_cents: int
    description: str
    created_by_user_id: UUID
    created_at: datetime

    payment_method: PaymentMethod | None = None
    exchange_rate_used: Decimal | None = None
    doctor_id: UUID | None = None
    doctor_type: DoctorType | None = None
    commission_pct: Decimal | None = None
    external_doctor_fee_cents: int | None = None
    corrects_entry_id: UUID | None = None
    is_sensitive: bool = False

    service_id: str | None = None
    quantity: int | None = None
    unit_price_cents: int | None = None
    notes: str | None = None
    cash_session_id: UUID | None = None

    model_config = {"from_attributes": True}


# ── Saldo ─────────────────────────────────────────────

class CurrencyTotals(BaseModel):
    """Totales por tipo efectivo (las correcciones cuentan en el tipo que corrigen)."""
    service_charges_cents: int = 0
    discounts_cents: int = 0
    payments_cents: int = 0
    refunds_cents: int = 0
    balance_cents: int = 0
    balance_due_cents: int = 0
    payments_by_method: dict[PaymentMethod, int] = Field(default_factory=dict)


class AccountBalanceResponse(BaseModel):
    account_id: UUID | None = None
    appointment_id: UUID
    entry_count: int
    balance_cents: int
    by_currency: dict[Currency, CurrencyTotals]
    entries: list[EntryResponse] = Field(default_factory=list)
