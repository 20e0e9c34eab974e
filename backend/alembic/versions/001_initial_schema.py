"""Initial schema: retreats, retreat sessions, bookings with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEGAL_STATE_PAIRS = (
    "(status = 'PENDING' AND payment_status = 'PENDING')"
    " OR (status = 'CONFIRMED' AND payment_status = 'PAID')"
    " OR (status = 'COMPLETED' AND payment_status = 'PAID')"
    " OR (status = 'CANCELLED')"
)


def upgrade() -> None:
    # Retreats table (catalogue, owned by the admin side)
    op.create_table(
        "retreats",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_retreats_created_at", "retreats", ["created_at"])

    # Retreat sessions: one bookable date range with its own capacity and price
    op.create_table(
        "retreat_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("retreat_id", sa.String(36), sa.ForeignKey("retreats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("arrival_time", sa.String(20), nullable=True),
        sa.Column("departure_time", sa.String(20), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.UniqueConstraint("retreat_id", "start_at", name="uq_retreat_session_start"),
        sa.CheckConstraint("start_at < end_at", name="check_session_start_before_end"),
        sa.CheckConstraint("capacity > 0", name="check_session_capacity_positive"),
        sa.CheckConstraint("price >= 0", name="check_session_price_non_negative"),
    )
    op.create_index("ix_retreat_sessions_retreat_start", "retreat_sessions", ["retreat_id", "start_at"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("is_guest", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("source", sa.String(20), nullable=False, server_default=sa.text("'checkout'")),
        sa.Column("retreat_id", sa.String(36), sa.ForeignKey("retreats.id"), nullable=False),
        sa.Column("retreat_name", sa.String(255), nullable=False),
        sa.Column("retreat_address", sa.String(500), nullable=True),
        sa.Column("session_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("session_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'eur'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("seat_count >= 1 AND seat_count <= 20", name="check_booking_seat_count_range"),
        sa.CheckConstraint("total_price >= 0", name="check_booking_total_price_non_negative"),
        sa.CheckConstraint(LEGAL_STATE_PAIRS, name="check_booking_state_pair"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_payment_intent_id", "bookings", ["payment_intent_id"])
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])
    # Reserved-seat aggregation: WHERE retreat_id AND session_start AND (status, payment_status)
    op.create_index(
        "ix_bookings_session_status",
        "bookings",
        ["retreat_id", "session_start", "status", "payment_status"],
    )
    # Cleanup sweep: pending bookings ordered by age
    op.create_index("ix_bookings_status_created", "bookings", ["status", "payment_status", "created_at"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("retreat_sessions")
    op.drop_table("retreats")
