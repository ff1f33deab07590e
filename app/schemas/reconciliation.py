"""
Schemas para Reconciliation — Corte de caja.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.ledger import Currency, PaymentMethod
from app.models.reconciliation import ReconciliationStatus


class ReconciliationCreate(BaseModel):
    """
    Request de corte. El monto esperado no se recibe: se calcula
    a partir del libro.
    """
    cash_session_id: UUID
    payment_method: PaymentMethod
    currency: Currency
    actual_amount_cents: int = Field(..., description="Monto contado")
    float_left_cents: int = Field(0, description="Efectivo que queda en cajón")
    envelope_id: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)


class ReconciliationDispute(BaseModel):
    notes: str = Field(..., min_length=1, max_length=2000)


class ReconciliationResponse(BaseModel):
    id: UUID
    cash_session_id: UUID
    organization_id: UUID
    clinic_id: UUID
    payment_method: PaymentMethod
    currency: Currency
    reconciled_at: datetime
    reconciled_by_user_id: UUID
    expected_amount_cents: int
    actual_amount_cents: int
    float_left_cents: int
    deposited_cents: int
    discrepancy_cents: int
    envelope_id: str | None = None
    status: ReconciliationStatus
    notes: str | None = None

    has_discrepancy: bool
    is_overage: bool
    is_shortage: bool

    model_config = {"from_attributes": True}


class ReconciliationCombination(BaseModel):
    payment_method: PaymentMethod
    currency: Currency
    expected_amount_cents: int


class ReconciliationPreview(BaseModel):
    """Lo que el cajero debe contar antes de cerrar la sesión."""
    cash_session_id: UUID
    starting_float_cents: int
    combinations: list[ReconciliationCombination]
    pending: list[ReconciliationCombination]
    reconciliations: list[ReconciliationResponse]


class ExpectedCashResponse(BaseModel):
    cash_session_id: UUID
    expected_cash: dict[Currency, int]


class DiscrepancyListResponse(BaseModel):
    items: list[ReconciliationResponse]
    total: int
    total_discrepancy_cents: int
