"""Initial schema: agenda, cuentas por cita, caja y cortes

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

APPOINTMENT_STATUSES = (
    'scheduled', 'confirmed', 'completed', 'cancelled',
    'rescheduling_queue', 'rescheduled',
)
ACTIVE_STATUSES_SQL = "status IN ('scheduled', 'confirmed', 'rescheduling_queue')"


def upgrade() -> None:
    # Exclusión con rangos + igualdad sobre UUID
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')

    # ── organizations / clinics / units ───────────────
    op.create_table(
        'organizations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'clinics',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='America/Mexico_City'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_clinics_organization_id', 'clinics', ['organization_id'])
    op.create_table(
        'units',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('clinic_id', UUID(as_uuid=True), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_units_organization_id', 'units', ['organization_id'])
    op.create_index('ix_units_clinic_id', 'units', ['clinic_id'])

    # ── doctors / patients / doctor_availability ──────
    op.create_table(
        'doctors',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('specialty', sa.String(100), nullable=True),
        sa.Column(
            'doctor_type',
            sa.Enum('internal', 'external', name='doctortype'),
            nullable=False,
            server_default='internal',
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_doctors_organization_id', 'doctors', ['organization_id'])
    op.create_table(
        'patients',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_patients_organization_id', 'patients', ['organization_id'])
    op.create_table(
        'doctor_availability',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('doctor_id', UUID(as_uuid=True), sa.ForeignKey('doctors.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_availability_doctor_date', 'doctor_availability', ['doctor_id', 'date'])

    # ── appointments ──────────────────────────────────
    op.create_table(
        'appointments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('clinic_id', UUID(as_uuid=True), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('unit_id', UUID(as_uuid=True), sa.ForeignKey('units.id'), nullable=False),
        sa.Column('doctor_id', UUID(as_uuid=True), sa.ForeignKey('doctors.id'), nullable=True),
        sa.Column('patient_id', UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            'status',
            sa.Enum(*APPOINTMENT_STATUSES, name='appointmentstatus'),
            nullable=False,
            server_default='scheduled',
        ),
        sa.Column('treatment_type', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('moved_to_queue_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('snoozed_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column(
            'rescheduled_to_appointment_id', UUID(as_uuid=True),
            sa.ForeignKey('appointments.id'), nullable=True,
        ),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('end_time > start_time', name='ck_appointment_time_range'),
    )
    op.create_index('idx_appointment_clinic_date', 'appointments', ['clinic_id', 'start_time'])
    op.create_index('idx_appointment_doctor_date', 'appointments', ['doctor_id', 'start_time'])
    op.create_index('idx_appointment_unit_date', 'appointments', ['unit_id', 'start_time'])
    op.create_index('idx_appointment_status', 'appointments', ['clinic_id', 'status'])
    op.create_index('idx_appointment_queue', 'appointments', ['status', 'moved_to_queue_at'])

    # Ningún par de citas activas del mismo doctor o unidad puede solaparse.
    # Rango semiabierto [inicio, fin): citas contiguas no chocan.
    op.execute(
        "ALTER TABLE appointments ADD CONSTRAINT excl_appointment_doctor_overlap "
        "EXCLUDE USING gist (doctor_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        f"WHERE (doctor_id IS NOT NULL AND {ACTIVE_STATUSES_SQL})"
    )
    op.execute(
        "ALTER TABLE appointments ADD CONSTRAINT excl_appointment_unit_overlap "
        "EXCLUDE USING gist (unit_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        f"WHERE ({ACTIVE_STATUSES_SQL})"
    )

    # ── cash_sessions ─────────────────────────────────
    op.create_table(
        'cash_sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('clinic_id', UUID(as_uuid=True), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('opening_type', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('starting_float_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('open', 'closed')", name='ck_cash_session_status'),
        sa.CheckConstraint("opening_type IN ('manual', 'auto')", name='ck_cash_session_opening_type'),
        sa.CheckConstraint('starting_float_cents >= 0', name='ck_cash_session_float'),
    )
    op.create_index(
        'uq_cash_session_open_per_user_clinic', 'cash_sessions', ['user_id', 'clinic_id'],
        unique=True, postgresql_where=sa.text("status = 'open'"),
    )
    op.create_index('idx_sessions_user_clinic_status', 'cash_sessions', ['user_id', 'clinic_id', 'status'])
    op.create_index('idx_sessions_clinic_status_opened', 'cash_sessions', ['clinic_id', 'status', 'opened_at'])

    # ── appointment_accounts / entries ────────────────
    op.create_table(
        'appointment_accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column(
            'appointment_id', UUID(as_uuid=True),
            sa.ForeignKey('appointments.id'), nullable=False, unique=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        'idx_appointment_accounts_org_created', 'appointment_accounts',
        ['organization_id', 'created_at'],
    )
    op.create_table(
        'appointment_account_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'appointment_account_id', UUID(as_uuid=True),
            sa.ForeignKey('appointment_accounts.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('created_by_user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('payment_method', sa.String(20), nullable=True),
        sa.Column('exchange_rate_used', sa.Numeric(10, 4), nullable=True),
        sa.Column('doctor_id', UUID(as_uuid=True), sa.ForeignKey('doctors.id'), nullable=True),
        sa.Column('doctor_type', sa.String(20), nullable=True),
        sa.Column('commission_pct', sa.Numeric(5, 2), nullable=True),
        sa.Column('external_doctor_fee_cents', sa.BigInteger(), nullable=True),
        sa.Column(
            'corrects_entry_id', UUID(as_uuid=True),
            sa.ForeignKey('appointment_account_entries.id'), nullable=True,
        ),
        sa.Column('is_sensitive', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('service_id', sa.String(255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cash_session_id', UUID(as_uuid=True), sa.ForeignKey('cash_sessions.id'), nullable=True),
        sa.CheckConstraint('amount_cents <> 0', name='amount_not_zero'),
        sa.CheckConstraint(
            "type IN ('service_charge', 'discount', 'payment', 'refund', 'correction')",
            name='ck_entry_type',
        ),
        sa.CheckConstraint("currency IN ('MXN', 'USD')", name='ck_entry_currency'),
        sa.CheckConstraint(
            "currency <> 'USD' OR exchange_rate_used IS NOT NULL",
            name='ck_entry_usd_rate',
        ),
        sa.CheckConstraint(
            "type <> 'payment' OR payment_method IS NOT NULL",
            name='ck_entry_payment_method',
        ),
    )
    op.create_index(
        'idx_entries_account_created', 'appointment_account_entries',
        ['appointment_account_id', 'created_at'],
    )
    op.create_index('idx_entries_doctor_created', 'appointment_account_entries', ['doctor_id', 'created_at'])
    op.create_index(
        'idx_entries_session_type_payment', 'appointment_account_entries',
        ['cash_session_id', 'type', 'payment_method', 'currency'],
    )
    op.create_index(
        'idx_entries_creator_created', 'appointment_account_entries',
        ['created_by_user_id', 'created_at'],
    )
    op.create_index('idx_entries_corrects', 'appointment_account_entries', ['corrects_entry_id'])

    # Libro INSERT-only
    op.execute(
        """
        CREATE FUNCTION forbid_ledger_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'appointment_account_entries es de solo inserción';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        "CREATE TRIGGER trg_entries_insert_only "
        "BEFORE UPDATE OR DELETE ON appointment_account_entries "
        "FOR EACH ROW EXECUTE FUNCTION forbid_ledger_mutation()"
    )

    # ── reconciliations ───────────────────────────────
    op.create_table(
        'reconciliations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'cash_session_id', UUID(as_uuid=True),
            sa.ForeignKey('cash_sessions.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('clinic_id', UUID(as_uuid=True), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('reconciled_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('reconciled_by_user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('expected_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('actual_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('float_left_cents', sa.BigInteger(), nullable=False),
        sa.Column('deposited_cents', sa.BigInteger(), nullable=False),
        sa.Column('discrepancy_cents', sa.BigInteger(), nullable=False),
        sa.Column('envelope_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            'cash_session_id', 'payment_method', 'currency',
            name='uq_reconciliation_session_method_currency',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'closed', 'disputed')", name='ck_reconciliation_status'
        ),
        sa.CheckConstraint('float_left_cents >= 0', name='ck_reconciliation_float'),
    )
    op.create_index('idx_recon_clinic_reconciled', 'reconciliations', ['clinic_id', 'reconciled_at'])

    # ── audit_log ─────────────────────────────────────
    op.create_table(
        'audit_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('entity', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('old_data', JSONB(), nullable=True),
        sa.Column('new_data', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_log_organization_id', 'audit_log', ['organization_id'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_entity', 'audit_log', ['entity'])
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('reconciliations')
    op.execute('DROP TRIGGER IF EXISTS trg_entries_insert_only ON appointment_account_entries')
    op.execute('DROP FUNCTION IF EXISTS forbid_ledger_mutation()')
    op.drop_table('appointment_account_entries')
    op.drop_table('appointment_accounts')
    op.drop_table('cash_sessions')
    op.drop_table('appointments')
    op.drop_table('doctor_availability')
    op.drop_table('patients')
    op.drop_table('doctors')
    op.drop_table('units')
    op.drop_table('clinics')
    op.drop_table('organizations')
    op.execute('DROP TYPE IF EXISTS appointmentstatus')
    op.execute('DROP TYPE IF EXISTS doctortype')
