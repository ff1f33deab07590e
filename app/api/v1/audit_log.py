"""
Endpoint de consulta del registro de auditoría.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.database import get_db
from app.schemas.audit_log import AuditLogResponse
from app.services import audit_service

router = APIRouter()


@router.get("", response_model=AuditLogResponse)
async def get_audit_log(
    page: int = Query(default=1, ge=1, description="Número de página"),
    size: int = Query(default=15, ge=1, le=100, description="Registros por página"),
    entity: str | None = Query(default=None, description="Filtrar por entidad"),
    entity_id: str | None = Query(default=None, description="Filtrar por ID de registro"),
    principal: Principal = Depends(require_permission("audit_log", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Registro de auditoría paginado de la organización. Solo administradores."""
    return await audit_service.get_audit_logs(
        db,
        organization_id=principal.organization_id,
        page=page,
        size=size,
        entity=entity,
        entity_id=entity_id,
    )
