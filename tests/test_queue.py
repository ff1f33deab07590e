"""
Tests de la cola de reprogramación: envío, listado, posposición,
cancelación y reprogramación hacia una cita nueva.
"""

from datetime import timedelta

import pytest

from app.core.exceptions import ConflictException, InvalidStateException, ValidationException
from app.core.timeutils import utcnow
from app.models.appointment import AppointmentStatus
from app.schemas.appointment import (
    AppointmentStatusChange,
    BulkMoveToQueueRequest,
    QueueRescheduleRequest,
)
from app.services import scheduling_service
from tests.conftest import at


@pytest.fixture
def schedule(db_session, principal, appointment_data):
    async def _schedule(start, end, **overrides):
        return await scheduling_service.schedule_appointment(
            db_session, appointment_data(start, end, **overrides), principal
        )

    return _schedule


async def test_move_to_queue_and_list(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, appt.id, "Doctor enfermo", principal)

    queue = await scheduling_service.get_rescheduling_queue(db_session, principal)
    assert queue.total == 1
    assert queue.items[0].id == appt.id
    assert queue.items[0].status == AppointmentStatus.RESCHEDULING_QUEUE
    assert queue.items[0].days_in_queue == 0


async def test_completed_appointment_cannot_enter_queue(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    await scheduling_service.change_status(
        db_session, appt.id, AppointmentStatusChange(status=AppointmentStatus.COMPLETED), principal
    )
    with pytest.raises(InvalidStateException):
        await scheduling_service.move_to_queue(db_session, appt.id, None, principal)


async def test_bulk_move_by_doctor(db_session, principal, schedule, test_doctor, second_unit):
    first = await schedule(at(9), at(10))
    second = await schedule(at(10), at(11), unit_id=second_unit.id)
    outside = await schedule(at(15), at(16))

    moved = await scheduling_service.move_unavailable_to_queue(
        db_session,
        BulkMoveToQueueRequest(
            doctor_id=test_doctor.id, start_time=at(8), end_time=at(12), reason="Congreso"
        ),
        principal,
    )
    assert set(moved) == {first.id, second.id}
    assert outside.status == AppointmentStatus.SCHEDULED


async def test_bulk_move_requires_doctor_or_unit(db_session, principal):
    with pytest.raises(ValidationException) as exc:
        await scheduling_service.move_unavailable_to_queue(
            db_session, BulkMoveToQueueRequest(start_time=at(8), end_time=at(12)), principal
        )
    assert exc.value.code == "MISSING_REQUIRED_FIELD"


async def test_queue_sort_order(db_session, principal, schedule, second_unit):
    older = await schedule(at(9), at(10))
    newer = await schedule(at(9), at(10), unit_id=second_unit.id, doctor_id=None)
    await scheduling_service.move_to_queue(db_session, older.id, None, principal)
    await scheduling_service.move_to_queue(db_session, newer.id, None, principal)
    newer.moved_to_queue_at = utcnow() + timedelta(seconds=5)
    await db_session.flush()

    oldest_first = await scheduling_service.get_rescheduling_queue(db_session, principal)
    assert [i.id for i in oldest_first.items] == [older.id, newer.id]

    newest_first = await scheduling_service.get_rescheduling_queue(
        db_session, principal, sort="newest"
    )
    assert [i.id for i in newest_first.items] == [newer.id, older.id]


async def test_snoozed_appointment_is_hidden(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, appt.id, None, principal)

    snoozed = await scheduling_service.snooze_in_queue(
        db_session, appt.id, utcnow() + timedelta(days=2), principal
    )
    assert snoozed.snoozed_until is not None

    queue = await scheduling_service.get_rescheduling_queue(db_session, principal)
    assert queue.total == 0


async def test_snooze_requires_future_date(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, appt.id, None, principal)
    with pytest.raises(ValidationException) as exc:
        await scheduling_service.snooze_in_queue(
            db_session, appt.id, utcnow() - timedelta(hours=1), principal
        )
    assert exc.value.code == "INVALID_SNOOZE"


async def test_cancel_from_queue_records_reason(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, appt.id, None, principal)

    cancelled = await scheduling_service.cancel_from_queue(
        db_session, appt.id, "Paciente no disponible", "Llamará después", principal
    )
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Paciente no disponible - Llamará después"


async def test_queue_operations_require_queue_status(db_session, principal, schedule):
    appt = await schedule(at(9), at(10))
    with pytest.raises(InvalidStateException) as exc:
        await scheduling_service.cancel_from_queue(db_session, appt.id, "x", None, principal)
    assert exc.value.code == "APPOINTMENT_NOT_IN_QUEUE"

    with pytest.raises(InvalidStateException):
        await scheduling_service.reschedule_from_queue(
            db_session,
            appt.id,
            QueueRescheduleRequest(start_time=at(13), end_time=at(14)),
            principal,
        )

    with pytest.raises(InvalidStateException):
        await scheduling_service.snooze_in_queue(
            db_session, appt.id, utcnow() + timedelta(days=1), principal
        )


async def test_reschedule_from_queue_links_new_appointment(db_session, principal, schedule):
    original = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, original.id, None, principal)

    original, new_appt = await scheduling_service.reschedule_from_queue(
        db_session,
        original.id,
        QueueRescheduleRequest(start_time=at(13), end_time=at(14)),
        principal,
    )
    assert original.status == AppointmentStatus.RESCHEDULED
    assert original.rescheduled_to_appointment_id == new_appt.id
    assert new_appt.status == AppointmentStatus.SCHEDULED
    assert new_appt.patient_id == original.patient_id
    assert new_appt.unit_id == original.unit_id
    assert new_appt.doctor_id == original.doctor_id

    queue = await scheduling_service.get_rescheduling_queue(db_session, principal)
    assert queue.total == 0


async def test_reschedule_from_queue_changes_doctor_but_never_clears_it(
    db_session, principal, schedule, test_doctor, second_doctor
):
    original = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, original.id, None, principal)

    _, new_appt = await scheduling_service.reschedule_from_queue(
        db_session,
        original.id,
        QueueRescheduleRequest(start_time=at(13), end_time=at(14), doctor_id=second_doctor.id),
        principal,
    )
    assert new_appt.doctor_id == second_doctor.id

    kept = await schedule(at(15), at(16))
    await scheduling_service.move_to_queue(db_session, kept.id, None, principal)
    _, replacement = await scheduling_service.reschedule_from_queue(
        db_session,
        kept.id,
        QueueRescheduleRequest(start_time=at(17), end_time=at(18), doctor_id=None),
        principal,
    )
    assert replacement.doctor_id == test_doctor.id


async def test_reschedule_from_queue_may_overlap_its_own_old_slot(db_session, principal, schedule):
    original = await schedule(at(9), at(10))
    await scheduling_service.move_to_queue(db_session, original.id, None, principal)

    _, new_appt = await scheduling_service.reschedule_from_queue(
        db_session,
        original.id,
        QueueRescheduleRequest(start_time=at(9, 30), end_time=at(10, 30)),
        principal,
    )
    assert new_appt.id != original.id


async def test_reschedule_from_queue_conflict_keeps_original_in_queue(
    db_session, principal, schedule
):
    original = await schedule(at(9), at(10))
    blocker = await schedule(at(13), at(14))
    await scheduling_service.move_to_queue(db_session, original.id, None, principal)

    with pytest.raises(ConflictException) as exc:
        await scheduling_service.reschedule_from_queue(
            db_session,
            original.id,
            QueueRescheduleRequest(start_time=at(13, 30), end_time=at(14, 30)),
            principal,
        )
    assert exc.value.code == "APPOINTMENT_CONFLICT"

    reloaded = await scheduling_service.get_appointment(db_session, original.id, principal)
    assert reloaded.status == AppointmentStatus.RESCHEDULING_QUEUE
    assert reloaded.rescheduled_to_appointment_id is None
    assert blocker.status == AppointmentStatus.SCHEDULED

    queue = await scheduling_service.get_rescheduling_queue(db_session, principal)
    assert [i.id for i in queue.items] == [original.id]
