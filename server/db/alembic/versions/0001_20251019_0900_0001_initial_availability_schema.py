"""Initial availability schema

Revision ID: 0001
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create availability_rules table
    op.create_table('availability_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=False),
        sa.Column('vendor_id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('rule_type', sa.String(length=20), nullable=False),
        sa.Column('frequency', sa.String(length=20), nullable=True),
        sa.Column('days_of_week', sa.JSON(), nullable=True),
        sa.Column('days_of_month', sa.JSON(), nullable=True),
        sa.Column('one_time_date', sa.Date(), nullable=True),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('booking_deadline_hours', sa.Integer(), nullable=False),
        sa.Column('generate_days_in_advance', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "(rule_type = 'recurring' AND one_time_date IS NULL AND ("
            "(frequency = 'daily' AND days_of_week IS NULL AND days_of_month IS NULL) OR "
            "(frequency = 'weekly' AND days_of_week IS NOT NULL AND days_of_month IS NULL) OR "
            "(frequency = 'monthly' AND days_of_month IS NOT NULL AND days_of_week IS NULL)"
            ")) OR "
            "(rule_type = 'one-time' AND one_time_date IS NOT NULL AND frequency IS NULL "
            "AND days_of_week IS NULL AND days_of_month IS NULL)",
            name='ck_rule_payload_matches_type'
        ),
        sa.CheckConstraint('capacity > 0', name='ck_rule_capacity_positive'),
        sa.CheckConstraint('duration_minutes > 0', name='ck_rule_duration_positive'),
        sa.CheckConstraint('booking_deadline_hours >= 0', name='ck_rule_deadline_hours_non_negative'),
        sa.CheckConstraint(
            'generate_days_in_advance IS NULL OR generate_days_in_advance >= 1',
            name='ck_rule_generate_days_positive'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_availability_rules_listing_id'), 'availability_rules', ['listing_id'], unique=False)
    op.create_index(op.f('ix_availability_rules_vendor_id'), 'availability_rules', ['vendor_id'], unique=False)
    op.create_index(op.f('ix_availability_rules_active'), 'availability_rules', ['active'], unique=False)
    op.create_index('ix_rules_listing_active', 'availability_rules', ['listing_id', 'active'], unique=False)

    # Create slots table
    op.create_table('slots',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=False),
        sa.Column('vendor_id', sa.String(length=128), nullable=False),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('booked', sa.Integer(), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False),
        sa.Column('booking_deadline', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=20), nullable=True),
        sa.Column('cancellation_message', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity > 0', name='ck_slot_capacity_positive'),
        sa.CheckConstraint('booked >= 0', name='ck_slot_booked_non_negative'),
        sa.CheckConstraint('available >= 0', name='ck_slot_available_non_negative'),
        sa.CheckConstraint('available <= capacity', name='ck_slot_available_lte_capacity'),
        sa.CheckConstraint('booked + available = capacity', name='ck_slot_counters_consistent'),
        sa.ForeignKeyConstraint(['rule_id'], ['availability_rules.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('listing_id', 'date', 'start_time', name='uq_slot_listing_date_start')
    )
    op.create_index(op.f('ix_slots_vendor_id'), 'slots', ['vendor_id'], unique=False)
    op.create_index(op.f('ix_slots_rule_id'), 'slots', ['rule_id'], unique=False)
    op.create_index(op.f('ix_slots_status'), 'slots', ['status'], unique=False)
    op.create_index('ix_slots_listing_date', 'slots', ['listing_id', 'date'], unique=False)

    # Create waitlist_entries table
    op.create_table('waitlist_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('slot_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=False),
        sa.Column('customer_id', sa.String(length=128), nullable=False),
        sa.Column('customer_email', sa.String(length=320), nullable=True),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('notified_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(customer_id) > 0', name='ck_waitlist_customer_id_not_empty'),
        sa.CheckConstraint(
            "(status IN ('waiting') AND notified_at IS NULL AND expires_at IS NULL) "
            "OR (status IN ('notified', 'expired', 'booked'))",
            name='ck_waitlist_waiting_not_notified'
        ),
        sa.ForeignKeyConstraint(['slot_id'], ['slots.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slot_id', 'sequence', name='uq_waitlist_slot_sequence')
    )
    op.create_index(op.f('ix_waitlist_entries_slot_id'), 'waitlist_entries', ['slot_id'], unique=False)
    op.create_index(op.f('ix_waitlist_entries_customer_id'), 'waitlist_entries', ['customer_id'], unique=False)
    op.create_index(op.f('ix_waitlist_entries_expires_at'), 'waitlist_entries', ['expires_at'], unique=False)
    op.create_index(
        'ix_waitlist_slot_status_order', 'waitlist_entries', ['slot_id', 'status', 'joined_at', 'sequence'], unique=False
    )
    op.create_index(
        'uq_waitlist_waiting_slot_customer', 'waitlist_entries', ['slot_id', 'customer_id'], unique=True,
        postgresql_where=sa.text("status = 'waiting'")
    )

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('slot_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=False),
        sa.Column('customer_id', sa.String(length=128), nullable=False),
        sa.Column('customer_email', sa.String(length=320), nullable=True),
        sa.Column('guests', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('waitlist_entry_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('guests > 0', name='ck_booking_guests_positive'),
        sa.ForeignKeyConstraint(['slot_id'], ['slots.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['waitlist_entry_id'], ['waitlist_entries.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_slot_id'), 'bookings', ['slot_id'], unique=False)
    op.create_index(op.f('ix_bookings_customer_id'), 'bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('bookings')
    op.drop_table('waitlist_entries')
    op.drop_table('slots')
    op.drop_table('availability_rules')
