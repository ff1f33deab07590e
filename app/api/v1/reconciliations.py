"""
Endpoints de cortes de caja: vista previa, registro, disputa
y reporte de diferencias.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.core.exceptions import ValidationException
from app.database import get_db
from app.schemas.reconciliation import (
    DiscrepancyListResponse,
    ReconciliationCreate,
    ReconciliationDispute,
    ReconciliationPreview,
    ReconciliationResponse,
)
from app.services import reconciliation_service

router = APIRouter()


@router.get("/preview", response_model=ReconciliationPreview)
async def get_preview(
    cash_session_id: UUID = Query(..., description="Sesión de caja"),
    principal: Principal = Depends(require_permission("reconciliation", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Montos esperados por (método, moneda) y cortes pendientes de la sesión."""
    return await reconciliation_service.get_reconciliation_preview(db, cash_session_id, principal)


@router.get("/discrepancies", response_model=DiscrepancyListResponse)
async def list_discrepancies(
    clinic_id: UUID = Query(..., description="Clínica"),
    date_from: date = Query(..., description="Desde fecha (YYYY-MM-DD)"),
    date_to: date = Query(..., description="Hasta fecha (YYYY-MM-DD)"),
    principal: Principal = Depends(require_permission("reconciliation", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Cortes con diferencia en el rango de fechas."""
    if date_to < date_from:
        raise ValidationException(
            "date_to debe ser igual o posterior a date_from", code="INVALID_DATE_RANGE"
        )
    return await reconciliation_service.list_discrepancies(
        db, principal, clinic_id, date_from, date_to
    )


@router.post("", response_model=ReconciliationResponse, status_code=201)
async def create_reconciliation(
    data: ReconciliationCreate,
    principal: Principal = Depends(require_permission("reconciliation", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Registra el corte de una combinación (método, moneda).
    La diferencia se calcula como contado - esperado.
    """
    return await reconciliation_service.create_reconciliation(db, data, principal)


@router.post("/{reconciliation_id}/dispute", response_model=ReconciliationResponse)
async def dispute_reconciliation(
    reconciliation_id: UUID,
    data: ReconciliationDispute,
    principal: Principal = Depends(require_permission("reconciliation", "dispute")),
    db: AsyncSession = Depends(get_db),
):
    return await reconciliation_service.dispute_reconciliation(
        db, reconciliation_id, data, principal
    )
