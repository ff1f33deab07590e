"""
Schemas Pydantic para la consulta del audit log.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class AuditLogItem(BaseModel):
    """Un registro individual del audit log."""
    id: UUID
    organization_id: UUID
    user_id: UUID | None = None
    entity: str
    entity_id: str
    action: str
    old_data: dict | None = None
    new_data: dict | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    """Respuesta paginada del audit log."""
    items: list[AuditLogItem]
    total: int
    page: int
    size: int
    pages: int
