"""Initial database schema

Revision ID: 001
Revises:
Create Date: 2025-02-03 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create events table
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("organizer_id", sa.String(length=64), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("attendee_count", sa.Integer(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=False),
        sa.Column("ticket_price", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("attendee_count >= 0", name="non_negative_attendee_count"),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="positive_capacity"),
        sa.CheckConstraint(
            "capacity IS NULL OR attendee_count <= capacity",
            name="attendee_count_within_capacity",
        ),
        sa.CheckConstraint("ticket_price >= 0", name="non_negative_ticket_price"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_events_organizer_id"), "events", ["organizer_id"], unique=False)

    # Create registrations table
    op.create_table(
        "registrations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "role IN ('ATTENDEE', 'SPEAKER', 'ORGANIZER', 'MANAGER')",
            name="valid_registration_role",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'REJECTED')",
            name="valid_registration_status",
        ),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "user_id", name="uq_registrations_event_user"),
    )
    op.create_index(
        "idx_registrations_event_status", "registrations", ["event_id", "status"], unique=False
    )
    op.create_index(op.f("ix_registrations_user_id"), "registrations", ["user_id"], unique=False)

    # Create payments table
    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("external_reference_id", sa.String(length=128), nullable=False),
        sa.Column("external_transaction_id", sa.String(length=128), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_email", sa.String(length=255), nullable=True),
        sa.Column("buyer_phone", sa.String(length=64), nullable=True),
        sa.Column("overbooked", sa.Boolean(), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="positive_quantity"),
        sa.CheckConstraint("amount >= 0", name="non_negative_amount"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED')",
            name="valid_payment_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_reference_id"),
    )
    op.create_index("idx_payments_event_status", "payments", ["event_id", "status"], unique=False)
    op.create_index("idx_payments_user_status", "payments", ["user_id", "status"], unique=False)
    op.create_index(op.f("ix_payments_event_id"), "payments", ["event_id"], unique=False)
    op.create_index(op.f("ix_payments_status"), "payments", ["status"], unique=False)
    op.create_index(op.f("ix_payments_user_id"), "payments", ["user_id"], unique=False)

    # Create payment_events table
    op.create_table(
        "payment_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("correlation_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payment_events_payment_id"), "payment_events", ["payment_id"], unique=False
    )
    op.create_index(
        op.f("ix_payment_events_correlation_id"),
        "payment_events",
        ["correlation_id"],
        unique=False,
    )

    # Create notifications table
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=True),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_notifications_unpublished",
        "notifications",
        ["published", "created_at"],
        unique=False,
    )
    op.create_index(
        op.f("ix_notifications_published"), "notifications", ["published"], unique=False
    )
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)

    # Create counter_audits table
    op.create_table(
        "counter_audits",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("cached_count", sa.Integer(), nullable=False),
        sa.Column("confirmed_registrations", sa.Integer(), nullable=False),
        sa.Column("paid_seats", sa.Integer(), nullable=False),
        sa.Column("discrepancy", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("audited_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('consistent', 'drifted')", name="valid_audit_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_counter_audits_event_id"), "counter_audits", ["event_id"], unique=False
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f("ix_counter_audits_event_id"), table_name="counter_audits")
    op.drop_table("counter_audits")

    op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_published"), table_name="notifications")
    op.drop_index("idx_notifications_unpublished", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index(op.f("ix_payment_events_correlation_id"), table_name="payment_events")
    op.drop_index(op.f("ix_payment_events_payment_id"), table_name="payment_events")
    op.drop_table("payment_events")

    op.drop_index(op.f("ix_payments_user_id"), table_name="payments")
    op.drop_index(op.f("ix_payments_status"), table_name="payments")
    op.drop_index(op.f("ix_payments_event_id"), table_name="payments")
    op.drop_index("idx_payments_user_status", table_name="payments")
    op.drop_index("idx_payments_event_status", table_name="payments")
    op.drop_table("payments")

    op.drop_index(op.f("ix_registrations_user_id"), table_name="registrations")
    op.drop_index("idx_registrations_event_status", table_name="registrations")
    op.drop_table("registrations")

    op.drop_index(op.f("ix_events_organizer_id"), table_name="events")
    op.drop_table("events")
