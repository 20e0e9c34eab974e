"""
Seat availability for retreat sessions.

available = capacity - SUM(seat_count) over seat-holding bookings, where a
booking holds seats while it is (PENDING, PENDING) or (CONFIRMED, PAID).

Every call re-reads reservation state from the database. Seat counts are
never cached: a stale count is exactly how overselling happens.
"""

from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.db.base import to_utc
from retreat_booking.models.booking import Booking, SEAT_HOLDING_PAIRS
from retreat_booking.schemas.booking import SessionAvailability
from retreat_booking.services.catalog_service import find_session, get_retreat


def seat_holding_clause():
    return or_(*[
        and_(Booking.status == status.value, Booking.payment_status == payment_status.value)
        for status, payment_status in SEAT_HOLDING_PAIRS
    ])


async def get_reserved_seats(db: AsyncSession, retreat_id: str, session_start: datetime) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(Booking.seat_count), 0)).where(
            Booking.retreat_id == retreat_id,
            Booking.session_start == to_utc(session_start),
            seat_holding_clause(),
        )
    )
    return int(result.scalar_one())


async def get_available_seats(db: AsyncSession, retreat_id: str, session_start: datetime) -> int:
    """
    Remaining seats for one session. Never negative, even if a session was
    over-reserved (e.g. capacity lowered by an admin).
    """
    retreat = await get_retreat(db, retreat_id)
    session = find_session(retreat, session_start)
    reserved = await get_reserved_seats(db, retreat.id, session.start_at)
    return max(0, session.capacity - reserved)


async def get_availability_overview(db: AsyncSession, retreat_id: str) -> list[SessionAvailability]:
    """Availability of every session of a retreat, in one aggregate query."""
    retreat = await get_retreat(db, retreat_id)

    result = await db.execute(
        select(Booking.session_start, func.sum(Booking.seat_count))
        .where(Booking.retreat_id == retreat.id, seat_holding_clause())
        .group_by(Booking.session_start)
    )
    reserved_by_start = {to_utc(start): int(total or 0) for start, total in result.all()}

    overview = []
    for session in retreat.sessions:
        reserved = reserved_by_start.get(session.start_at, 0)
        overview.append(SessionAvailability(
            session_start=session.start_at,
            session_end=session.end_at,
            capacity=session.capacity,
            reserved=reserved,
            available=max(0, session.capacity - reserved),
        ))
    return overview
