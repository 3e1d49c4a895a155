"""Create clinic booking schema and appointment details view

Revision ID: c3a1f0d2b7e9
Revises:
Create Date: 2025-09-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c3a1f0d2b7e9'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES = ('pet_gender', 'appointment_status', 'user_role')


def upgrade() -> None:
    """Upgrade: create the eight tables and the vw_appointment_details view.

    Deletion rules:
    - pets.owner_id, appointments.vet_id, appointment_services.service_id: RESTRICT
    - appointments.pet_id, appointment_services.appointment_id, invoices.appointment_id: CASCADE
    """
    op.create_table(
        'owners',
        sa.Column('owner_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('phone', sa.String(length=30), nullable=False),
        sa.Column('email', sa.String(length=150), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('phone', name='uq_owner_phone'),
        sa.UniqueConstraint('email', name='uq_owner_email'),
    )

    op.create_table(
        'pets',
        sa.Column('pet_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('species', sa.String(length=50), nullable=False),
        sa.Column('breed', sa.String(length=100), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', sa.Enum('Male', 'Female', 'Unknown', name='pet_gender'), nullable=False, server_default='Unknown'),
        sa.Column('microchip', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['owners.owner_id'], name='fk_pets_owner', onupdate='CASCADE', ondelete='RESTRICT'),
        sa.UniqueConstraint('microchip', name='uq_pet_microchip'),
    )
    op.create_index('idx_pets_owner', 'pets', ['owner_id'])

    op.create_table(
        'vets',
        sa.Column('vet_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('license_number', sa.String(length=100), nullable=False),
        sa.Column('phone', sa.String(length=30), nullable=True),
        sa.Column('email', sa.String(length=150), nullable=True),
        sa.Column('specialization', sa.String(length=150), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('license_number', name='uq_vet_license'),
        sa.UniqueConstraint('email', name='uq_vet_email'),
    )

    op.create_table(
        'services',
        sa.Column('service_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('duration_minutes', sa.Integer(), nullable=True, server_default='30'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('name', name='uq_service_name'),
    )

    op.create_table(
        'appointments',
        sa.Column('appointment_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('pet_id', sa.Integer(), nullable=False),
        sa.Column('vet_id', sa.Integer(), nullable=False),
        sa.Column('appointment_datetime', sa.DateTime(), nullable=False),
        sa.Column('status', sa.Enum('scheduled', 'completed', 'cancelled', 'no-show', name='appointment_status'), nullable=False, server_default='scheduled'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['pet_id'], ['pets.pet_id'], name='fk_appointments_pet', onupdate='CASCADE', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['vet_id'], ['vets.vet_id'], name='fk_appointments_vet', onupdate='CASCADE', ondelete='RESTRICT'),
        sa.UniqueConstraint('vet_id', 'appointment_datetime', name='uq_vet_datetime'),
    )
    op.create_index('idx_appointments_pet', 'appointments', ['pet_id'])
    op.create_index('idx_appointments_vet', 'appointments', ['vet_id'])
    op.create_index('idx_appointments_dt', 'appointments', ['appointment_datetime'])

    op.create_table(
        'appointment_services',
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price_at_time', sa.Numeric(10, 2), nullable=False),
        sa.PrimaryKeyConstraint('appointment_id', 'service_id'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.appointment_id'], name='fk_as_appointment', onupdate='CASCADE', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.service_id'], name='fk_as_service', onupdate='CASCADE', ondelete='RESTRICT'),
        sa.CheckConstraint('quantity >= 1', name='ck_as_quantity'),
    )
    op.create_index('idx_as_service', 'appointment_services', ['service_id'])

    op.create_table(
        'invoices',
        sa.Column('invoice_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=100), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('issued_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.appointment_id'], name='fk_invoice_appointment', onupdate='CASCADE', ondelete='CASCADE'),
        sa.UniqueConstraint('invoice_number', name='uq_invoice_number'),
        sa.UniqueConstraint('appointment_id', name='uq_invoice_appointment'),
    )
    op.create_index('idx_invoice_issued_at', 'invoices', ['issued_at'])

    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('display_name', sa.String(length=150), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('admin', 'reception', 'vet', 'accountant', name='user_role'), nullable=False, server_default='reception'),
        sa.Column('email', sa.String(length=150), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # Read-only reporting view; the application composes the same projection on read
    op.execute("""
    CREATE VIEW vw_appointment_details AS
    SELECT
      a.appointment_id,
      a.appointment_datetime,
      a.status,
      p.pet_id,
      p.name AS pet_name,
      p.species,
      o.owner_id,
      o.first_name || ' ' || o.last_name AS owner_name,
      v.vet_id,
      v.first_name || ' ' || v.last_name AS vet_name,
      a.reason
    FROM appointments a
    JOIN pets p ON a.pet_id = p.pet_id
    JOIN owners o ON p.owner_id = o.owner_id
    JOIN vets v ON a.vet_id = v.vet_id
    """)


def downgrade() -> None:
    """Downgrade: drop the view, then tables from the leaves up, then enum types."""
    op.execute("DROP VIEW IF EXISTS vw_appointment_details")

    op.drop_table('users')
    op.drop_index('idx_invoice_issued_at', table_name='invoices')
    op.drop_table('invoices')
    op.drop_index('idx_as_service', table_name='appointment_services')
    op.drop_table('appointment_services')
    op.drop_index('idx_appointments_dt', table_name='appointments')
    op.drop_index('idx_appointments_vet', table_name='appointments')
    op.drop_index('idx_appointments_pet', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('services')
    op.drop_table('vets')
    op.drop_index('idx_pets_owner', table_name='pets')
    op.drop_table('pets')
    op.drop_table('owners')

    # Enum types only exist as separate objects on Postgres
    if op.get_bind().dialect.name == 'postgresql':
        for name in ENUM_TYPES:
            op.execute(f"DROP TYPE IF EXISTS {name}")


# DEV NOTES
# - `||` concatenation in the view works on Postgres and SQLite; MySQL needs CONCAT().
# - uq_vet_datetime is the store-level guard against double booking; the
#   application checks the slot first to report a precise conflict.
# - appointment_services.price_at_time is a snapshot of services.price at
#   booking time and is never recomputed.
