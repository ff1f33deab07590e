"""
Tests de cortes de caja: monto esperado, diferencias, disputas y vista previa.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from app.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from app.core.timeutils import utcnow
from app.models.ledger import Currency, EntryType, PaymentMethod
from app.models.reconciliation import ReconciliationStatus
from app.schemas.ledger import EntryCreate
from app.schemas.reconciliation import ReconciliationCreate, ReconciliationDispute
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
def record(db_session, principal, appointment):
    async def _record(entry_type: EntryType, amount_cents: int, method: PaymentMethod):
        return await ledger_service.create_entry(
            db_session,
            EntryCreate(
                appointment_id=appointment.id,
                type=entry_type,
                amount_cents=amount_cents,
                payment_method=method,
                description="Movimiento de caja",
            ),
            principal,
        )

    return _record


@pytest_asyncio.fixture
async def session_with_cash(record):
    """Pago de 3000.00 y reembolso de 500.00, ambos en efectivo."""
    payment = await record(EntryType.PAYMENT, 300000, PaymentMethod.CASH)
    await record(EntryType.REFUND, -50000, PaymentMethod.CASH)
    return payment.cash_session_id


def _cash_count(session_id, actual: int, float_left: int = 0) -> ReconciliationCreate:
    return ReconciliationCreate(
        cash_session_id=session_id,
        payment_method=PaymentMethod.CASH,
        currency=Currency.MXN,
        actual_amount_cents=actual,
        float_left_cents=float_left,
    )


async def test_expected_cash_nets_refunds(db_session, session_with_cash, record):
    await record(EntryType.PAYMENT, 80000, PaymentMethod.CARD)
    expected = await reconciliation_service.calculate_expected_cash(db_session, session_with_cash)
    assert expected == {Currency.MXN: 250000}


async def test_reconciliation_amounts(db_session, principal, session_with_cash):
    reconciliation = await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=248000, float_left=20000), principal
    )
    assert reconciliation.expected_amount_cents == 250000
    assert reconciliation.deposited_cents == 228000
    assert reconciliation.discrepancy_cents == -2000
    assert reconciliation.status == ReconciliationStatus.PENDING
    assert reconciliation.has_discrepancy
    assert reconciliation.is_shortage
    assert not reconciliation.is_overage


async def test_exact_count_has_no_discrepancy(db_session, principal, session_with_cash):
    reconciliation = await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=250000), principal
    )
    assert reconciliation.discrepancy_cents == 0
    assert not reconciliation.has_discrepancy


async def test_duplicate_reconciliation(db_session, principal, session_with_cash):
    await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=250000), principal
    )
    with pytest.raises(ConflictException) as exc:
        await reconciliation_service.create_reconciliation(
            db_session, _cash_count(session_with_cash, actual=250000), principal
        )
    assert exc.value.code == "RECONCILIATION_ALREADY_EXISTS"


async def test_negative_counts_are_rejected(db_session, principal, session_with_cash):
    with pytest.raises(ValidationException) as exc:
        await reconciliation_service.create_reconciliation(
            db_session, _cash_count(session_with_cash, actual=-1), principal
        )
    assert exc.value.code == "INVALID_ACTUAL_AMOUNT"

    with pytest.raises(ValidationException) as exc:
        await reconciliation_service.create_reconciliation(
            db_session, _cash_count(session_with_cash, actual=100, float_left=-1), principal
        )
    assert exc.value.code == "INVALID_FLOAT_LEFT"


async def test_reconciliation_on_closed_session(db_session, principal, session_with_cash):
    await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=250000), principal
    )
    await cash_session_service.close_session(db_session, session_with_cash, principal)

    with pytest.raises(InvalidStateException) as exc:
        await reconciliation_service.create_reconciliation(
            db_session,
            ReconciliationCreate(
                cash_session_id=session_with_cash,
                payment_method=PaymentMethod.CARD,
                currency=Currency.MXN,
                actual_amount_cents=0,
            ),
            principal,
        )
    assert exc.value.code == "CASH_SESSION_ALREADY_CLOSED"


async def test_reconciliation_for_unknown_session(db_session, principal):
    with pytest.raises(NotFoundException) as exc:
        await reconciliation_service.create_reconciliation(
            db_session, _cash_count(uuid4(), actual=0), principal
        )
    assert exc.value.code == "CASH_SESSION_NOT_FOUND"


async def test_dispute_reconciliation(db_session, principal, session_with_cash):
    reconciliation = await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=240000), principal
    )
    disputed = await reconciliation_service.dispute_reconciliation(
        db_session, reconciliation.id, ReconciliationDispute(notes="Falta un billete"), principal
    )
    assert disputed.status == ReconciliationStatus.DISPUTED
    assert disputed.notes == "Falta un billete"

    with pytest.raises(InvalidStateException) as exc:
        await reconciliation_service.dispute_reconciliation(
            db_session, reconciliation.id, ReconciliationDispute(notes="Otra vez"), principal
        )
    assert exc.value.code == "RECONCILIATION_ALREADY_DISPUTED"


async def test_dispute_unknown_reconciliation(db_session, principal):
    with pytest.raises(NotFoundException) as exc:
        await reconciliation_service.dispute_reconciliation(
            db_session, uuid4(), ReconciliationDispute(notes="x"), principal
        )
    assert exc.value.code == "RECONCILIATION_NOT_FOUND"


async def test_preview_lists_pending_combinations(
    db_session, principal, session_with_cash, record
):
    await record(EntryType.PAYMENT, 80000, PaymentMethod.CARD)
    await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=250000), principal
    )

    preview = await reconciliation_service.get_reconciliation_preview(
        db_session, session_with_cash, principal
    )
    expected = {(c.payment_method, c.currency): c.expected_amount_cents for c in preview.combinations}
    assert expected == {
        (PaymentMethod.CASH, Currency.MXN): 250000,
        (PaymentMethod.CARD, Currency.MXN): 80000,
    }
    assert [(c.payment_method, c.currency) for c in preview.pending] == [
        (PaymentMethod.CARD, Currency.MXN)
    ]
    assert len(preview.reconciliations) == 1

    pending = await reconciliation_service.pending_combinations(db_session, session_with_cash)
    assert pending == [(PaymentMethod.CARD, Currency.MXN)]


async def test_list_discrepancies(db_session, principal, session_with_cash, record, test_clinic):
    await record(EntryType.PAYMENT, 80000, PaymentMethod.CARD)
    short = await reconciliation_service.create_reconciliation(
        db_session, _cash_count(session_with_cash, actual=245000), principal
    )
    await reconciliation_service.create_reconciliation(
        db_session,
        ReconciliationCreate(
            cash_session_id=session_with_cash,
            payment_method=PaymentMethod.CARD,
            currency=Currency.MXN,
            actual_amount_cents=80000,
        ),
        principal,
    )

    today = utcnow().date()
    report = await reconciliation_service.list_discrepancies(
        db_session, principal, test_clinic.id, today - timedelta(days=1), today + timedelta(days=1)
    )
    assert report.total == 1
    assert report.items[0].id == short.id
    assert report.total_discrepancy_cents == -5000

    past = await reconciliation_service.list_discrepancies(
        db_session, principal, test_clinic.id, today - timedelta(days=10), today - timedelta(days=5)
    )
    assert past.total == 0
