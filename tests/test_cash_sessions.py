"""
Tests de sesiones de caja: apertura manual y automática, cierre y consulta.
"""

from uuid import uuid4

import pytest
import pytest_asyncio

from app.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.models.cash_session import CashSessionOpeningType, CashSessionStatus
from app.models.ledger import Currency, EntryType, PaymentMethod
from app.models.reconciliation import ReconciliationStatus
from app.schemas.cash_session import CashSessionOpen
from app.schemas.ledger import EntryCreate
from app.schemas.reconciliation import ReconciliationCreate
from app.services import (
    cash_session_service,
    ledger_service,
    reconciliation_service,
    scheduling_service,
)
from tests.conftest import at


@pytest_asyncio.fixture
async def appointment(db_session, principal, appointment_data):
    return await scheduling_service.schedule_appointment(
        db_session, appointment_data(at(9), at(10)), principal
    )


@pytest.fixture
def pay(db_session, principal, appointment):
    async def _pay(amount_cents: int, method: PaymentMethod = PaymentMethod.CASH):
        return await ledger_service.create_entry(
            db_session,
            EntryCreate(
                appointment_id=appointment.id,
                type=EntryType.PAYMENT,
                amount_cents=amount_cents,
                payment_method=method,
                description="Pago de consulta",
            ),
            principal,
        )

    return _pay


# ── Apertura ─────────────────────────────────────────

async def test_open_manual_session(db_session, principal, test_clinic):
    session = await cash_session_service.open_session(
        db_session,
        CashSessionOpen(clinic_id=test_clinic.id, starting_float_cents=50000, notes="Turno mañana"),
        principal,
    )
    assert session.status == CashSessionStatus.OPEN
    assert session.opening_type == CashSessionOpeningType.MANUAL
    assert session.starting_float_cents == 50000
    assert session.user_id == principal.user_id
    assert session.closed_at is None


async def test_second_open_session_is_rejected(db_session, principal, test_clinic):
    data = CashSessionOpen(clinic_id=test_clinic.id, starting_float_cents=0)
    await cash_session_service.open_session(db_session, data, principal)
    with pytest.raises(ConflictException) as exc:
        await cash_session_service.open_session(db_session, data, principal)
    assert exc.value.code == "CASH_SESSION_ALREADY_OPEN"


async def test_negative_starting_float(db_session, principal, test_clinic):
    with pytest.raises(ValidationException) as exc:
        await cash_session_service.open_session(
            db_session,
            CashSessionOpen(clinic_id=test_clinic.id, starting_float_cents=-1),
            principal,
        )
    assert exc.value.code == "INVALID_STARTING_FLOAT"


async def test_open_session_in_unknown_clinic(db_session, principal):
    with pytest.raises(NotFoundException) as exc:
        await cash_session_service.open_session(
            db_session, CashSessionOpen(clinic_id=uuid4()), principal
        )
    assert exc.value.code == "CLINIC_NOT_FOUND"


async def test_get_or_create_is_idempotent(db_session, principal, test_clinic):
    first = await cash_session_service.get_or_create_open_session(
        db_session, principal.organization_id, test_clinic.id, principal.user_id
    )
    second = await cash_session_service.get_or_create_open_session(
        db_session, principal.organization_id, test_clinic.id, principal.user_id
    )
    assert first.id == second.id
    assert first.opening_type == CashSessionOpeningType.AUTO
    assert first.starting_float_cents == 0


async def test_get_or_create_reuses_manual_session(db_session, principal, test_clinic):
    manual = await cash_session_service.open_session(
        db_session, CashSessionOpen(clinic_id=test_clinic.id, starting_float_cents=1000), principal
    )
    current = await cash_session_service.get_or_create_open_session(
        db_session, principal.organization_id, test_clinic.id, principal.user_id
    )
    assert current.id == manual.id


async def test_get_or_create_in_unknown_clinic(db_session, principal):
    with pytest.raises(NotFoundException) as exc:
        await cash_session_service.get_or_create_open_session(
            db_session, principal.organization_id, uuid4(), principal.user_id
        )
    assert exc.value.code == "CLINIC_NOT_FOUND"


# ── Cierre ───────────────────────────────────────────

async def test_empty_session_closes_without_reconciliation(db_session, principal, test_clinic):
    session = await cash_session_service.open_session(
        db_session, CashSessionOpen(clinic_id=test_clinic.id), principal
    )
    closed = await cash_session_service.close_session(db_session, session.id, principal)
    assert closed.status == CashSessionStatus.CLOSED
    assert closed.closed_at is not None


async def test_close_requires_reconciliation(db_session, principal, test_clinic, pay):
    payment = await pay(120000)

    with pytest.raises(InvalidStateException) as exc:
        await cash_session_service.close_session(db_session, payment.cash_session_id, principal)
    assert exc.value.code == "RECONCILIATION_PENDING"

    reconciliation = await reconciliation_service.create_reconciliation(
        db_session,
        ReconciliationCreate(
            cash_session_id=payment.cash_session_id,
            payment_method=PaymentMethod.CASH,
            currency=Currency.MXN,
            actual_amount_cents=120000,
        ),
        principal,
    )
    closed = await cash_session_service.close_session(db_session, payment.cash_session_id, principal)
    assert closed.status == CashSessionStatus.CLOSED

    await db_session.refresh(reconciliation)
    assert reconciliation.status == ReconciliationStatus.CLOSED

    with pytest.raises(InvalidStateException) as exc:
        await cash_session_service.close_session(db_session, payment.cash_session_id, principal)
    assert exc.value.code == "CASH_SESSION_ALREADY_CLOSED"


async def test_new_session_after_close(db_session, principal, test_clinic):
    first = await cash_session_service.open_session(
        db_session, CashSessionOpen(clinic_id=test_clinic.id), principal
    )
    await cash_session_service.close_session(db_session, first.id, principal)

    second = await cash_session_service.get_or_create_open_session(
        db_session, principal.organization_id, test_clinic.id, principal.user_id
    )
    assert second.id != first.id
    assert second.status == CashSessionStatus.OPEN


async def test_close_unknown_session(db_session, principal):
    with pytest.raises(NotFoundException) as exc:
        await cash_session_service.close_session(db_session, uuid4(), principal)
    assert exc.value.code == "CASH_SESSION_NOT_FOUND"


# ── Consulta ─────────────────────────────────────────

async def test_session_details(db_session, principal, pay):
    cash = await pay(100000)
    await pay(40000, PaymentMethod.CARD)

    details = await cash_session_service.get_session_details(
        db_session, cash.cash_session_id, principal
    )
    assert details.session.id == cash.cash_session_id
    assert len(details.entries) == 2
    assert details.expected_cash == {Currency.MXN: 100000}
    summary = {(i.payment_method, i.currency): i.total_cents for i in details.payment_summary}
    assert summary == {
        (PaymentMethod.CASH, Currency.MXN): 100000,
        (PaymentMethod.CARD, Currency.MXN): 40000,
    }
    assert details.reconciliations == []


async def test_list_sessions(db_session, principal, test_clinic):
    session = await cash_session_service.open_session(
        db_session, CashSessionOpen(clinic_id=test_clinic.id), principal
    )
    listing = await cash_session_service.list_sessions(
        db_session, principal, clinic_id=test_clinic.id, status=CashSessionStatus.OPEN
    )
    assert listing.total == 1
    assert listing.pages == 1
    assert listing.items[0].id == session.id

    closed = await cash_session_service.list_sessions(
        db_session, principal, status=CashSessionStatus.CLOSED
    )
    assert closed.total == 0
