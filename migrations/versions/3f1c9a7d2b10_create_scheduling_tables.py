"""create_scheduling_tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACTIVE_STATUS_SQL = (
    "status IN ('pending', 'accepted', 'approved', 'confirmed', 'on_the_way', 'in_progress')"
)

user_type = sa.Enum('customer', 'provider', 'admin', name='user_type')
service_category = sa.Enum(
    'cleaning', 'plumbing', 'electrical', 'appliance_repair', 'other', name='service_category'
)
day_of_week = sa.Enum(
    'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday', name='day_of_week'
)
appointment_status = sa.Enum(
    'pending', 'accepted', 'approved', 'confirmed', 'on_the_way', 'in_progress',
    'completed', 'cancelled', 'no_show',
    name='appointment_status',
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', user_type, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('phone IS NOT NULL OR email IS NOT NULL', name='user_contact_required'),
    )
    op.create_index('ix_users_phone', 'users', ['phone'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_type', 'users', ['type'])

    op.create_table(
        'providers',
        sa.Column('id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('rating_avg', sa.Numeric(3, 2), nullable=True),
        sa.Column('rating_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_jobs_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )

    op.create_table(
        'services',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', service_category, nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=True),
        sa.Column('base_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_services_provider_id', 'services', ['provider_id'])
    op.create_index('ix_services_name', 'services', ['name'])
    op.create_index('ix_services_category', 'services', ['category'])

    op.create_table(
        'availability_slots',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', day_of_week, nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('start_time < end_time', name='availability_slot_time_valid'),
        sa.UniqueConstraint(
            'provider_id', 'day_of_week', 'start_time', 'end_time',
            name='uniq_provider_day_window',
        ),
    )
    op.create_index('ix_availability_provider_day', 'availability_slots', ['provider_id', 'day_of_week'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id', ondelete='RESTRICT'), nullable=False),
        sa.Column(
            'availability_id', sa.Uuid(),
            sa.ForeignKey('availability_slots.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('scheduled_date', sa.DateTime(), nullable=False),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('final_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('repair_description', sa.String(length=2000), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=1000), nullable=True),
        sa.Column('reschedule_reason', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_appointments_customer_id', 'appointments', ['customer_id'])
    op.create_index('ix_appointments_service_id', 'appointments', ['service_id'])
    op.create_index('ix_appointments_availability_id', 'appointments', ['availability_id'])
    op.create_index(
        'ix_appointments_provider_date_status', 'appointments',
        ['provider_id', 'scheduled_date', 'status'],
    )
    # Double-booking guard: one active appointment per provider and timestamp
    op.create_index(
        'uq_appointments_provider_active_slot', 'appointments',
        ['provider_id', 'scheduled_date'],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
        sqlite_where=sa.text(ACTIVE_STATUS_SQL),
    )

    op.create_table(
        'ratings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'appointment_id', sa.Uuid(),
            sa.ForeignKey('appointments.id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating_value', sa.Integer(), nullable=False),
        sa.Column('comment', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('rating_value >= 1 AND rating_value <= 5', name='rating_value_range'),
    )
    op.create_index('ix_ratings_provider_id', 'ratings', ['provider_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('ratings')
    op.drop_table('appointments')
    op.drop_table('availability_slots')
    op.drop_table('services')
    op.drop_table('providers')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (appointment_status, day_of_week, service_category, user_type):
        enum_type.drop(bind, checkfirst=True)
