"""
Concurrency tests: simultaneous reservations must never oversell a session,
and competing state transitions must never overwrite each other.

Every contender uses its own database session (and connection), the way
concurrent API requests do.
"""

import asyncio

import pytest
from sqlalchemy import delete

from retreat_booking.core.exceptions import Conflict, InvalidState, NotFound
from retreat_booking.models.booking import Booking, BookingState
from retreat_booking.schemas.payment import PaymentMetadata
from retreat_booking.services.availability_service import get_available_seats, get_reserved_seats
from retreat_booking.services.booking_service import BookingService
from retreat_booking.services.payment_service import PaymentService
from conftest import SESSION_START, booking_create, create_retreat, payment_event, sign_payload


async def _attempt(session_factory, notifier, retreat_id: str, seat_count: int = 1):
    async with session_factory() as session:
        service = BookingService(session, notifier)
        try:
            booking = await service.create_booking(None, booking_create(retreat_id, seat_count=seat_count))
        except Conflict as e:
            return e
        return booking


@pytest.mark.asyncio
async def test_concurrent_bookings_never_oversell(session_factory, notifier, db_session):
    capacity, contenders = 3, 8
    retreat = await create_retreat(session_factory, capacity=capacity)

    results = await asyncio.gather(*[
        _attempt(session_factory, notifier, retreat.id) for _ in range(contenders)
    ])

    successes = [r for r in results if not isinstance(r, Conflict)]
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len(successes) == capacity
    assert len(conflicts) == contenders - capacity
    assert all(c.error_code == "insufficient_seats" for c in conflicts)

    assert await get_reserved_seats(db_session, retreat.id, SESSION_START) == capacity
    assert await get_available_seats(db_session, retreat.id, SESSION_START) == 0


@pytest.mark.asyncio
async def test_concurrent_multi_seat_bookings_stay_within_capacity(session_factory, notifier, db_session):
    retreat = await create_retreat(session_factory, capacity=5)

    results = await asyncio.gather(*[
        _attempt(session_factory, notifier, retreat.id, seat_count=2) for _ in range(4)
    ])

    successes = [r for r in results if not isinstance(r, Conflict)]
    assert len(successes) == 2
    assert await get_reserved_seats(db_session, retreat.id, SESSION_START) == 4
    assert await get_available_seats(db_session, retreat.id, SESSION_START) == 1


@pytest.mark.asyncio
async def test_seats_released_by_cancel_can_be_rebooked(session_factory, notifier, db_session):
    retreat = await create_retreat(session_factory, capacity=1)
    first = await _attempt(session_factory, notifier, retreat.id)
    assert isinstance(await _attempt(session_factory, notifier, retreat.id), Conflict)

    await BookingService(db_session, notifier).cancel_booking(first.id)

    results = await asyncio.gather(*[_attempt(session_factory, notifier, retreat.id) for _ in range(3)])
    assert len([r for r in results if not isinstance(r, Conflict)]) == 1


class InterleavingBookingService(BookingService):
    """Runs `interleave` once, right after the first booking read."""

    def __init__(self, *args, interleave, **kwargs):
        super().__init__(*args, **kwargs)
        self._interleave = interleave

    async def get_booking(self, booking_id: str):
        booking = await super().get_booking(booking_id)
        if self._interleave is not None:
            interleave, self._interleave = self._interleave, None
            await interleave()
        return booking


def _confirm_elsewhere(session_factory, notifier, booking_id: str, payment_intent_id: str):
    async def confirm():
        async with session_factory() as session:
            await BookingService(session, notifier).confirm_booking(booking_id, payment_intent_id)
    return confirm


def _delete_elsewhere(session_factory, booking_id: str):
    async def remove():
        async with session_factory() as session:
            await session.execute(delete(Booking).where(Booking.id == booking_id))
            await session.commit()
    return remove


@pytest.mark.asyncio
async def test_payment_failure_leaves_booking_confirmed_meanwhile(session_factory, notifier, db_session, retreat):
    booking = await BookingService(db_session, notifier).create_booking(None, booking_create(retreat.id))
    service = InterleavingBookingService(
        db_session, notifier,
        interleave=_confirm_elsewhere(session_factory, notifier, booking.id, "pi_paid"),
    )

    with pytest.raises(InvalidState):
        await service.cancel_booking(booking.id, "payment failed", payment_failed=True)

    stored = await BookingService(db_session, notifier).get_booking(booking.id)
    assert stored.state is BookingState.CONFIRMED_PAID
    assert stored.payment_intent_id == "pi_paid"
    assert stored.cancellation_reason is None


@pytest.mark.asyncio
async def test_payment_failed_webhook_after_confirmation_is_acknowledged(
    session_factory, notifier, gateway, db_session, retreat,
):
    booking = await BookingService(db_session, notifier).create_booking(None, booking_create(retreat.id))
    bookings = InterleavingBookingService(
        db_session, notifier,
        interleave=_confirm_elsewhere(session_factory, notifier, booking.id, "pi_retry"),
    )
    payments = PaymentService(db_session, gateway, bookings)
    payload = payment_event(
        "payment_intent.payment_failed",
        "pi_declined",
        PaymentMetadata(booking_id=booking.id).to_gateway(),
        status="requires_payment_method",
    )

    result = await payments.handle_webhook(payload, sign_payload(payload))

    assert result.handled is False
    stored = await BookingService(db_session, notifier).get_booking(booking.id)
    assert (stored.status, stored.payment_status) == ("CONFIRMED", "PAID")


@pytest.mark.asyncio
async def test_client_cancel_racing_confirmation_keeps_payment(session_factory, notifier, db_session, retreat):
    booking = await BookingService(db_session, notifier).create_booking(None, booking_create(retreat.id))
    service = InterleavingBookingService(
        db_session, notifier,
        interleave=_confirm_elsewhere(session_factory, notifier, booking.id, "pi_paid"),
    )

    cancelled = await service.cancel_booking(booking.id, "customer request")

    assert (cancelled.status, cancelled.payment_status) == ("CANCELLED", "PAID")
    assert cancelled.payment_intent_id == "pi_paid"


@pytest.mark.asyncio
async def test_cancel_of_booking_deleted_by_cleanup_is_not_found(session_factory, notifier, db_session, retreat):
    booking = await BookingService(db_session, notifier).create_booking(None, booking_create(retreat.id))
    service = InterleavingBookingService(
        db_session, notifier,
        interleave=_delete_elsewhere(session_factory, booking.id),
    )

    with pytest.raises(NotFound):
        await service.cancel_booking(booking.id, "Cancelled by admin")


@pytest.mark.asyncio
async def test_concurrent_cancels_keep_first_reason(session_factory, notifier, db_session, retreat):
    booking = await BookingService(db_session, notifier).create_booking(None, booking_create(retreat.id))

    async def cancel_elsewhere():
        async with session_factory() as session:
            await BookingService(session, notifier).cancel_booking(booking.id, "first")

    service = InterleavingBookingService(db_session, notifier, interleave=cancel_elsewhere)

    cancelled = await service.cancel_booking(booking.id, "second")

    assert cancelled.cancellation_reason == "first"
