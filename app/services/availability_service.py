"""
Lectura de ventanas de disponibilidad de doctores.
La agenda no las modifica: las administra el módulo de disponibilidad.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.timeutils import ensure_utc
from app.models.doctor_availability import DoctorAvailability


async def get_by_doctor_and_date(
    db: AsyncSession, doctor_id: UUID, target_date: date
) -> list[DoctorAvailability]:
    """Ventanas del doctor en la fecha, en orden cronológico."""
    result = await db.execute(
        select(DoctorAvailability)
        .where(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.date == target_date,
        )
        .order_by(DoctorAvailability.start_time)
    )
    return list(result.scalars().all())


async def is_available(
    db: AsyncSession, doctor_id: UUID, start: datetime, end: datetime
) -> bool:
    """
    True si una ventana disponible del doctor cubre [start, end] completo.
    Las ventanas son por día en UTC: una cita que cruza la medianoche no
    cabe en ninguna.
    """
    start, end = ensure_utc(start), ensure_utc(end)
    if start.date() != end.date():
        return False
    result = await db.execute(
        select(func.count(DoctorAvailability.id)).where(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.date == start.date(),
            DoctorAvailability.is_available.is_(True),
            DoctorAvailability.start_time <= start.time(),
            DoctorAvailability.end_time >= end.time(),
        )
    )
    return result.scalar_one() > 0
