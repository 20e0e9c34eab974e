"""
Booking model: a reservation of seats on one retreat session.

Key design decisions:
- `status` and `payment_status` are stored separately for reporting, but only
  the pairs listed in BookingState are legal; a CHECK constraint keeps the
  database from ever holding anything else.
- `total_price` is frozen at creation. Later catalogue price changes never
  touch existing bookings.
- Retreat name/address are snapshotted so receipts survive catalogue edits.
- Expired unpaid bookings are deleted by the cleanup sweep, not flagged.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Column, Integer, String, Text, JSON, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from retreat_booking.db.base import Base, TimestampMixin, UTCDateTime
from retreat_booking.models.retreat import _uuid


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class BookingSource(str, enum.Enum):
    CHECKOUT = "checkout"
    ADMIN = "admin"


class BookingState(enum.Enum):
    """The four observable booking states."""

    PENDING_UNPAID = "pending_unpaid"
    CONFIRMED_PAID = "confirmed_paid"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def of(cls, status: BookingStatus, payment_status: PaymentStatus) -> "BookingState":
        status = BookingStatus(status)
        payment_status = PaymentStatus(payment_status)
        if status is BookingStatus.CANCELLED:
            return cls.CANCELLED
        pair = (status, payment_status)
        if pair == (BookingStatus.PENDING, PaymentStatus.PENDING):
            return cls.PENDING_UNPAID
        if pair == (BookingStatus.CONFIRMED, PaymentStatus.PAID):
            return cls.CONFIRMED_PAID
        if pair == (BookingStatus.COMPLETED, PaymentStatus.PAID):
            return cls.COMPLETED
        raise ValueError(f"Illegal booking state: {status.value}/{payment_status.value}")

    @property
    def holds_seats(self) -> bool:
        return self in (BookingState.PENDING_UNPAID, BookingState.CONFIRMED_PAID)


# (status, payment_status) pairs that count against capacity
SEAT_HOLDING_PAIRS = (
    (BookingStatus.PENDING, PaymentStatus.PENDING),
    (BookingStatus.CONFIRMED, PaymentStatus.PAID),
)

_LEGAL_STATE_SQL = (
    "(status = 'PENDING' AND payment_status = 'PENDING')"
    " OR (status = 'CONFIRMED' AND payment_status = 'PAID')"
    " OR (status = 'COMPLETED' AND payment_status = 'PAID')"
    " OR (status = 'CANCELLED')"
)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=True, index=True)  # NULL = guest checkout
    is_guest = Column(Boolean, nullable=False, default=True)
    source = Column(String(20), nullable=False, default=BookingSource.CHECKOUT.value)

    retreat_id = Column(String(36), ForeignKey("retreats.id"), nullable=False)
    retreat_name = Column(String(255), nullable=False)
    retreat_address = Column(String(500), nullable=True)
    session_start = Column(UTCDateTime(), nullable=False)
    session_end = Column(UTCDateTime(), nullable=False)

    seat_count = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)  # minor currency units, frozen
    currency = Column(String(3), nullable=False, default="eur")

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String(255), nullable=True, index=True)

    participants = Column(JSON, nullable=False, default=list)
    billing_address = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    cancellation_reason = Column(String(500), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    retreat = relationship("Retreat", lazy="raise")

    __table_args__ = (
        CheckConstraint("seat_count >= 1 AND seat_count <= 20", name="check_booking_seat_count_range"),
        CheckConstraint("total_price >= 0", name="check_booking_total_price_non_negative"),
        CheckConstraint(_LEGAL_STATE_SQL, name="check_booking_state_pair"),
        # Reserved-seat aggregation filters on exactly these columns
        Index("ix_bookings_session_status", "retreat_id", "session_start", "status", "payment_status"),
        # Cleanup sweep: pending bookings by age
        Index("ix_bookings_status_created", "status", "payment_status", "created_at"),
    )

    @property
    def state(self) -> BookingState:
        return BookingState.of(self.status, self.payment_status)

    @property
    def holds_seats(self) -> bool:
        return self.state.holds_seats

    @property
    def primary_email(self) -> Optional[str]:
        if self.participants:
            return self.participants[0].get("email")
        return None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, retreat={self.retreat_id}, seats={self.seat_count}, "
            f"status={self.status}/{self.payment_status})>"
        )
