"""
Fixtures compartidas para Pytest.
Configura base de datos de test, datos base de la organización y clientes HTTP.
"""

import os

# Antes de importar la app: SQLite y HS256 para tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-para-firmar-tokens-hs256"
os.environ["DEBUG"] = "false"

from collections.abc import AsyncGenerator, Callable  # noqa: E402
from datetime import date, datetime, time, timezone  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import app.models  # noqa: E402,F401
from app.auth.dependencies import Principal  # noqa: E402
from app.auth.jwt import create_access_token  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.clinic import Clinic  # noqa: E402
from app.models.doctor import Doctor, DoctorType  # noqa: E402
from app.models.doctor_availability import DoctorAvailability  # noqa: E402
from app.models.organization import Organization  # noqa: E402
from app.models.patient import Patient  # noqa: E402
from app.models.unit import Unit  # noqa: E402
from app.schemas.appointment import AppointmentCreate  # noqa: E402

# Días fijos de agenda, lejos de "ahora". SLOTS_DAY solo tiene la ventana
# de la mañana para medir horarios libres con precisión.
AGENDA_DAY = date(2030, 6, 3)
SLOTS_DAY = date(2030, 6, 4)


def at(hour: int, minute: int = 0, day: date = AGENDA_DAY) -> datetime:
    """Hora UTC en el día de agenda de los tests."""
    return datetime.combine(day, time(hour, minute)).replace(tzinfo=timezone.utc)


# ── Base de datos ────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Crea las tablas en un SQLite propio de cada test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test."""

    async def _get_test_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Datos base ───────────────────────────────────────

async def _persist(db: AsyncSession, obj):
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def test_org(db_session: AsyncSession) -> Organization:
    return await _persist(db_session, Organization(id=uuid4(), name="Grupo Dental Test"))


@pytest_asyncio.fixture
async def test_clinic(db_session: AsyncSession, test_org: Organization) -> Clinic:
    return await _persist(
        db_session,
        Clinic(id=uuid4(), organization_id=test_org.id, name="Clínica Centro"),
    )


@pytest_asyncio.fixture
async def test_unit(db_session: AsyncSession, test_clinic: Clinic) -> Unit:
    return await _persist(
        db_session,
        Unit(
            id=uuid4(),
            organization_id=test_clinic.organization_id,
            clinic_id=test_clinic.id,
            name="Sillón 1",
        ),
    )


@pytest_asyncio.fixture
async def second_unit(db_session: AsyncSession, test_clinic: Clinic) -> Unit:
    return await _persist(
        db_session,
        Unit(
            id=uuid4(),
            organization_id=test_clinic.organization_id,
            clinic_id=test_clinic.id,
            name="Sillón 2",
        ),
    )


@pytest_asyncio.fixture
async def test_doctor(db_session: AsyncSession, test_org: Organization) -> Doctor:
    return await _persist(
        db_session,
        Doctor(
            id=uuid4(),
            organization_id=test_org.id,
            first_name="Ana",
            last_name="Ruiz",
            doctor_type=DoctorType.INTERNAL,
        ),
    )


@pytest_asyncio.fixture
async def second_doctor(db_session: AsyncSession, test_org: Organization) -> Doctor:
    return await _persist(
        db_session,
        Doctor(
            id=uuid4(),
            organization_id=test_org.id,
            first_name="Luis",
            last_name="Prieto",
            doctor_type=DoctorType.EXTERNAL,
        ),
    )


@pytest_asyncio.fixture
async def test_patient(db_session: AsyncSession, test_org: Organization) -> Patient:
    return await _persist(
        db_session,
        Patient(id=uuid4(), organization_id=test_org.id, first_name="María", last_name="López"),
    )


@pytest_asyncio.fixture
async def morning_availability(
    db_session: AsyncSession, test_doctor: Doctor
) -> DoctorAvailability:
    """Ventana 09:00–12:00 del doctor en el día de horarios libres."""
    return await _persist(
        db_session,
        DoctorAvailability(
            id=uuid4(),
            doctor_id=test_doctor.id,
            date=SLOTS_DAY,
            start_time=time(9, 0),
            end_time=time(12, 0),
            is_available=True,
        ),
    )


@pytest_asyncio.fixture
async def workday_availability(
    db_session: AsyncSession, test_doctor: Doctor, second_doctor: Doctor
) -> list[DoctorAvailability]:
    """Jornada 07:00–21:00 de ambos doctores en el día de agenda."""
    windows = [
        DoctorAvailability(
            id=uuid4(),
            doctor_id=doctor.id,
            date=AGENDA_DAY,
            start_time=time(7, 0),
            end_time=time(21, 0),
            is_available=True,
        )
        for doctor in (test_doctor, second_doctor)
    ]
    db_session.add_all(windows)
    await db_session.commit()
    return windows


# ── Identidad ────────────────────────────────────────

@pytest.fixture
def principal(test_org: Organization) -> Principal:
    return Principal(organization_id=test_org.id, user_id=uuid4(), roles=["admin"])


@pytest.fixture
def auth_headers(principal: Principal) -> dict:
    token = create_access_token(
        principal.user_id, principal.organization_id, principal.roles
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def doctor_headers(principal: Principal) -> dict:
    token = create_access_token(uuid4(), principal.organization_id, ["doctor"])
    return {"Authorization": f"Bearer {token}"}


# ── Factories ────────────────────────────────────────

@pytest.fixture
def appointment_data(
    test_clinic: Clinic,
    test_unit: Unit,
    test_doctor: Doctor,
    test_patient: Patient,
    workday_availability: list[DoctorAvailability],
) -> Callable[..., AppointmentCreate]:
    """Arma un AppointmentCreate con los datos base; se puede sobreescribir cualquier campo."""

    def _build(start: datetime, end: datetime, **overrides) -> AppointmentCreate:
        fields = {
            "clinic_id": test_clinic.id,
            "unit_id": test_unit.id,
            "doctor_id": test_doctor.id,
            "patient_id": test_patient.id,
            "start_time": start,
            "end_time": end,
            "treatment_type": "Limpieza",
        }
        fields.update(overrides)
        return AppointmentCreate(**fields)

    return _build
