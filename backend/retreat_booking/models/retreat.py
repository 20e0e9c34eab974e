"""
Retreat catalogue models.

The booking core only reads these tables. Capacity and price belong to the
admin catalogue; the one column the booking engine writes is
`RetreatSession.version`, bumped on every seat reservation so concurrent
reservations for the same session serialise on it (optimistic locking).
"""

from uuid import uuid4

from sqlalchemy import Column, Integer, String, ForeignKey, Index, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from retreat_booking.db.base import Base, TimestampMixin, UTCDateTime


def _uuid() -> str:
    return str(uuid4())


class Retreat(Base, TimestampMixin):
    __tablename__ = "retreats"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)

    sessions = relationship(
        "RetreatSession",
        back_populates="retreat",
        lazy="selectin",
        order_by="RetreatSession.start_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Retreat(id={self.id}, title={self.title})>"


class RetreatSession(Base):
    __tablename__ = "retreat_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    retreat_id = Column(String(36), ForeignKey("retreats.id", ondelete="CASCADE"), nullable=False)
    start_at = Column(UTCDateTime(), nullable=False)
    end_at = Column(UTCDateTime(), nullable=False)
    capacity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)  # minor currency units
    address = Column(String(500), nullable=True)
    arrival_time = Column(String(20), nullable=True)
    departure_time = Column(String(20), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    retreat = relationship("Retreat", back_populates="sessions")

    __table_args__ = (
        UniqueConstraint("retreat_id", "start_at", name="uq_retreat_session_start"),
        CheckConstraint("start_at < end_at", name="check_session_start_before_end"),
        CheckConstraint("capacity > 0", name="check_session_capacity_positive"),
        CheckConstraint("price >= 0", name="check_session_price_non_negative"),
        Index("ix_retreat_sessions_retreat_start", "retreat_id", "start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RetreatSession(retreat={self.retreat_id}, start={self.start_at}, "
            f"capacity={self.capacity}, price={self.price})>"
        )
