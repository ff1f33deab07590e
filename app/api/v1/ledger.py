"""
Endpoints del libro de cuentas por cita.
Las entradas son solo de inserción: los errores se corrigen con una
entrada de corrección.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.database import get_db
from app.schemas.ledger import (
    AccountBalanceResponse,
    CorrectionCreate,
    EntryCreate,
    EntryResponse,
)
from app.services import ledger_service

router = APIRouter()


@router.post("/entries", response_model=EntryResponse, status_code=201)
async def create_entry(
    data: EntryCreate,
    principal: Principal = Depends(require_permission("ledger", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Registra una entrada en la cuenta de la cita (la cuenta se crea
    con la primera entrada). Un pago en efectivo abre la caja del
    usuario si no tenía una abierta.
    """
    return await ledger_service.create_entry(db, data, principal)


@router.post("/entries/{entry_id}/corrections", response_model=EntryResponse, status_code=201)
async def create_correction(
    entry_id: UUID,
    data: CorrectionCreate,
    principal: Principal = Depends(require_permission("ledger", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Revierte por completo una entrada con una corrección de signo opuesto."""
    return await ledger_service.create_correction(db, entry_id, data, principal)


@router.get("/appointments/{appointment_id}/balance", response_model=AccountBalanceResponse)
async def get_account_balance(
    appointment_id: UUID,
    include_entries: bool = Query(True, description="Incluir el detalle de entradas"),
    principal: Principal = Depends(require_permission("ledger", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.get_account_balance(
        db, appointment_id, principal, include_entries=include_entries
    )
