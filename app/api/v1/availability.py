"""
Endpoints de disponibilidad: horarios libres de un doctor.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import Principal, require_permission
from app.database import get_db
from app.schemas.appointment import AvailableSlotsResponse
from app.services import scheduling_service

router = APIRouter()


@router.get("/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    doctor_id: UUID = Query(..., description="ID del doctor"),
    target_date: date = Query(..., alias="date", description="Fecha (YYYY-MM-DD)"),
    slot_minutes: int | None = Query(None, description="Duración de cada horario en minutos"),
    principal: Principal = Depends(require_permission("appointment", "read")),
    db: AsyncSession = Depends(get_db),
):
    """
    Horarios libres del doctor en la fecha, según sus ventanas
    de disponibilidad y sus citas activas.
    """
    slots = await scheduling_service.get_available_slots(
        db, doctor_id, target_date, principal, slot_minutes
    )
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        date=target_date,
        slot_minutes=slots.slot_minutes,
        slots=list(slots),
    )
