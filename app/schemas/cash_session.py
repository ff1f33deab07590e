"""
Schemas para CashSession — Apertura y cierre de caja.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.cash_session import CashSessionOpeningType, CashSessionStatus
from app.models.ledger import Currency, PaymentMethod
from app.schemas.ledger import EntryResponse
from app.schemas.reconciliation import ReconciliationResponse


class CashSessionOpen(BaseModel):
    """Request para abrir una sesión de caja."""
    clinic_id: UUID
    starting_float_cents: int = Field(0, description="Fondo inicial en centavos")
    notes: str | None = Field(None, max_length=2000)


class CashSessionResponse(BaseModel):
    """Respuesta de una sesión de caja."""
    id: UUID
    organization_id: UUID
    clinic_id: UUID
    user_id: UUID
    status: CashSessionStatus
    opening_type: CashSessionOpeningType
    starting_float_cents: int
    notes: str | None = None
    opened_at: datetime
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class CashSessionListResponse(BaseModel):
    """Respuesta paginada de sesiones de caja."""
    items: list[CashSessionResponse]
    total: int
    page: int
    size: int
    pages: int


class PaymentSummaryItem(BaseModel):
    """Suma de entradas de la sesión por (método, moneda)."""
    payment_method: PaymentMethod
    currency: Currency
    total_cents: int
    entry_count: int


class CashSessionDetails(BaseModel):
    session: CashSessionResponse
    entries: list[EntryResponse]
    expected_cash: dict[Currency, int]
    payment_summary: list[PaymentSummaryItem]
    reconciliations: list[ReconciliationResponse]
