"""
Detección de conflictos de agenda.

Dos citas chocan si comparten doctor O unidad, ambas están en un estado
activo (scheduled, confirmed, rescheduling_queue) y sus intervalos
semiabiertos se solapan: start1 < end2 AND end1 > start2.
Una cita que termina justo cuando empieza otra no choca.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException
from app.models.appointment import ACTIVE_STATUSES, Appointment

logger = logging.getLogger(__name__)


def times_overlap(
    start1: datetime, end1: datetime, start2: datetime, end2: datetime
) -> bool:
    """Solapamiento de intervalos semiabiertos [start, end)."""
    return start1 < end2 and end1 > start2


async def find_conflict(
    db: AsyncSession,
    candidate: Appointment,
    exclude_ids: Iterable[UUID] = (),
) -> Appointment | None:
    """
    Retorna la primera cita activa que choca con `candidate`, o None.
    La propia cita candidata siempre se excluye de la comparación.
    """
    resource_filters = [Appointment.unit_id == candidate.unit_id]
    if candidate.doctor_id is not None:
        resource_filters.append(Appointment.doctor_id == candidate.doctor_id)

    query = select(Appointment).where(
        or_(*resource_filters),
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.start_time < candidate.end_time,
        Appointment.end_time > candidate.start_time,
    )

    excluded = {i for i in exclude_ids if i is not None}
    if candidate.id is not None:
        excluded.add(candidate.id)
    if excluded:
        query = query.where(Appointment.id.not_in(excluded))

    query = query.order_by(Appointment.start_time).limit(1)
    result = await db.execute(query)
    return result.scalars().first()


async def check_for_conflicts(
    db: AsyncSession,
    candidate: Appointment,
    exclude_ids: Iterable[UUID] = (),
) -> None:
    """Lanza ConflictException(APPOINTMENT_CONFLICT) ante el primer choque."""
    existing = await find_conflict(db, candidate, exclude_ids)
    if existing is None:
        return

    shared = "El doctor" if (
        candidate.doctor_id is not None and existing.doctor_id == candidate.doctor_id
    ) else "La unidad"
    logger.warning(
        "Conflicto de agenda: candidata %s choca con %s (%s)",
        candidate.id, existing.id, shared,
    )
    raise ConflictException(
        f"{shared} ya tiene una cita entre "
        f"{existing.start_time.strftime('%H:%M')} y {existing.end_time.strftime('%H:%M')}",
        code="APPOINTMENT_CONFLICT",
    )
