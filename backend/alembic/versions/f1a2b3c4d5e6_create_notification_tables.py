"""Create organization, patient, appointment and notification tables.

Revision ID: f1a2b3c4d5e6
Revises:
Create Date: 2026-10-12 09:00:00.000000

Messages carry typed ``appointment_id`` / ``timing_in_hours`` columns next to
the JSONB metadata so the scheduler's de-duplication lookup is an index seek.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = 'f1a2b3c4d5e6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'organizations',
        _id_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
    )

    op.create_table(
        'users',
        _id_column(),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'patients',
        _id_column(),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('first_name', sa.String(length=255), nullable=False),
        sa.Column('last_name', sa.String(length=255), nullable=False),
        sa.Column('mobile_number', sa.String(length=50), nullable=False),
        sa.Column('follow_up_reason', sa.Text(), nullable=True),
        sa.Column('follow_up_date', sa.Date(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_patients_org_name', 'patients', ['org_id', 'last_name', 'first_name'])

    op.create_table(
        'appointments',
        _id_column(),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('patient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('doctor_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time', sa.Time(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name='ck_appointments_status'),
    )
    op.create_index('ix_appointments_org_date_time', 'appointments', ['org_id', 'date', 'time', 'status'])
    op.create_index('ix_appointments_patient', 'appointments', ['org_id', 'patient_id'])

    op.create_table(
        'organization_variables',
        _id_column(),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('org_id', 'key', name='uq_organization_variables_org_key'),
    )

    op.create_table(
        'notification_settings',
        _id_column(),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('appointment_reminders', postgresql.JSONB(), nullable=False),
        sa.Column('message_templates', postgresql.JSONB(), nullable=False),
        sa.Column('notification_toggles', postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('patient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('appointments.id'), nullable=True),
        sa.Column('timing_in_hours', sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        'ix_messages_reminder_dedup',
        'messages',
        ['org_id', 'appointment_id', 'timing_in_hours', 'status', 'created_at'],
    )
    op.create_index('ix_messages_org_patient_created', 'messages', ['org_id', 'patient_id', 'created_at'])
    op.create_index('ix_messages_org_created', 'messages', ['org_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_messages_org_created', table_name='messages')
    op.drop_index('ix_messages_org_patient_created', table_name='messages')
    op.drop_index('ix_messages_reminder_dedup', table_name='messages')
    op.drop_table('messages')
    op.drop_table('notification_settings')
    op.drop_table('organization_variables')
    op.drop_index('ix_appointments_patient', table_name='appointments')
    op.drop_index('ix_appointments_org_date_time', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('ix_patients_org_name', table_name='patients')
    op.drop_table('patients')
    op.drop_table('users')
    op.drop_table('organizations')
