"""
Endpoints de Caja: apertura, sesión actual, cierre y detalle.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.database import get_db
from app.models.cash_session import CashSessionStatus
from app.schemas.cash_session import (
    CashSessionDetails,
    CashSessionListResponse,
    CashSessionOpen,
    CashSessionResponse,
)
from app.schemas.reconciliation import ExpectedCashResponse
from app.services import cash_session_service, reconciliation_service

router = APIRouter()


@router.get("/current", response_model=CashSessionResponse | None)
async def get_current_session(
    clinic_id: UUID = Query(..., description="Clínica"),
    principal: Principal = Depends(require_permission("cash_session", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Sesión abierta del usuario en la clínica (o null si no hay)."""
    return await cash_session_service.get_current_session(db, principal, clinic_id)


@router.post("/current", response_model=CashSessionResponse)
async def get_or_create_current_session(
    clinic_id: UUID = Query(..., description="Clínica"),
    principal: Principal = Depends(require_permission("cash_session", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Retorna la sesión abierta del usuario o abre una automática con fondo 0."""
    return await cash_session_service.get_or_create_open_session(
        db, principal.organization_id, clinic_id, principal.user_id
    )


@router.post("", response_model=CashSessionResponse, status_code=201)
async def open_session(
    data: CashSessionOpen,
    principal: Principal = Depends(require_permission("cash_session", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Abre una sesión de caja con fondo inicial."""
    return await cash_session_service.open_session(db, data, principal)


@router.get("", response_model=CashSessionListResponse)
async def list_sessions(
    clinic_id: UUID | None = Query(None),
    user_id: UUID | None = Query(None),
    status: CashSessionStatus | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_permission("cash_session", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await cash_session_service.list_sessions(
        db,
        principal,
        clinic_id=clinic_id,
        user_id=user_id,
        status=status,
        page=page,
        size=size,
    )


@router.get("/{session_id}", response_model=CashSessionDetails)
async def get_session_details(
    session_id: UUID,
    principal: Principal = Depends(require_permission("cash_session", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Sesión con sus entradas, efectivo esperado, resumen por método y cortes."""
    return await cash_session_service.get_session_details(db, session_id, principal)


@router.get("/{session_id}/expected-cash", response_model=ExpectedCashResponse)
async def get_expected_cash(
    session_id: UUID,
    principal: Principal = Depends(require_permission("cash_session", "read")),
    db: AsyncSession = Depends(get_db),
):
    session = await cash_session_service.get_session(db, session_id, principal)
    return ExpectedCashResponse(
        cash_session_id=session.id,
        expected_cash=await reconciliation_service.calculate_expected_cash(db, session.id),
    )


@router.post("/{session_id}/close", response_model=CashSessionResponse)
async def close_session(
    session_id: UUID,
    principal: Principal = Depends(require_permission("cash_session", "close")),
    db: AsyncSession = Depends(get_db),
):
    """Cierra la sesión. Requiere un corte por cada (método, moneda) usado."""
    return await cash_session_service.close_session(db, session_id, principal)
