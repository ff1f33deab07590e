"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.appointments import router as appointments_router
from app.api.v1.audit_log import router as audit_log_router
from app.api.v1.availability import router as availability_router
from app.api.v1.cash_sessions import router as cash_sessions_router
from app.api.v1.ledger import router as ledger_router
from app.api.v1.reconciliations import router as reconciliations_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    appointments_router,
    prefix="/appointments",
    tags=["Citas"],
)

api_v1_router.include_router(
    availability_router,
    prefix="/availability",
    tags=["Disponibilidad"],
)

api_v1_router.include_router(
    ledger_router,
    prefix="/ledger",
    tags=["Cuentas por Cita"],
)

api_v1_router.include_router(
    cash_sessions_router,
    prefix="/cash-sessions",
    tags=["Caja"],
)

api_v1_router.include_router(
    reconciliations_router,
    prefix="/reconciliations",
    tags=["Cortes de Caja"],
)

api_v1_router.include_router(
    audit_log_router,
    prefix="/audit-log",
    tags=["Auditoría"],
)
