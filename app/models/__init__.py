"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.organization import Organization
from app.models.clinic import Clinic
from app.models.unit import Unit
from app.models.doctor import Doctor, DoctorType
from app.models.patient import Patient
from app.models.doctor_availability import DoctorAvailability
from app.models.appointment import Appointment, AppointmentStatus
from app.models.ledger import (
    AppointmentAccount,
    AppointmentAccountEntry,
    Currency,
    EntryType,
    PaymentMethod,
)
from app.models.cash_session import CashSession, CashSessionOpeningType, CashSessionStatus
from app.models.reconciliation import Reconciliation, ReconciliationStatus
from app.models.audit_log import AuditLog

__all__ = [
    "Organization",
    "Clinic",
    "Unit",
    "Doctor",
    "DoctorType",
    "Patient",
    "DoctorAvailability",
    "Appointment",
    "AppointmentStatus",
    "AppointmentAccount",
    "AppointmentAccountEntry",
    "Currency",
    "EntryType",
    "PaymentMethod",
    "CashSession",
    "CashSessionOpeningType",
    "CashSessionStatus",
    "Reconciliation",
    "ReconciliationStatus",
    "AuditLog",
]
