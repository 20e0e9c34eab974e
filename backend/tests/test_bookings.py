"""
Tests for the booking lifecycle: creation, confirmation, cancellation, stats.
"""

import pytest
from sqlalchemy import update

from retreat_booking.core.exceptions import Conflict, InvalidArgument, InvalidState, NotFound
from retreat_booking.models.booking import BookingState
from retreat_booking.models.retreat import RetreatSession
from retreat_booking.schemas.booking import AdminBookingCreate
from retreat_booking.services.booking_service import BookingService
from conftest import SESSION_END, SESSION_PRICE, SESSION_START, booking_create, booking_payload, create_retreat

MISSING_ID = "0b7a4d1e-95c2-4f0e-9a55-1d2f3c4b5a69"


@pytest.mark.asyncio
async def test_create_booking_holds_seats_pending(booking_service, retreat):
    booking = await booking_service.create_booking("user-1", booking_create(retreat.id, seat_count=2))

    assert booking.state is BookingState.PENDING_UNPAID
    assert booking.holds_seats
    assert booking.user_id == "user-1"
    assert booking.is_guest is False
    assert booking.source == "checkout"
    assert booking.retreat_name == "Alpine Retreat"
    assert booking.session_start == SESSION_START
    assert booking.session_end == SESSION_END
    assert booking.total_price == 2 * SESSION_PRICE
    assert booking.payment_intent_id is None


@pytest.mark.asyncio
async def test_guest_booking(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    assert booking.user_id is None
    assert booking.is_guest is True


@pytest.mark.asyncio
async def test_insufficient_seats(booking_service, retreat):
    await booking_service.create_booking(None, booking_create(retreat.id, seat_count=1))

    with pytest.raises(Conflict) as exc_info:
        await booking_service.create_booking(None, booking_create(retreat.id, seat_count=2))

    assert exc_info.value.status_code == 409
    assert "available 1" in exc_info.value.detail


@pytest.mark.asyncio
async def test_seat_count_above_limit_is_invalid(booking_service, retreat):
    payload = booking_create(retreat.id).model_copy(update={"seat_count": 21})
    with pytest.raises(InvalidArgument):
        await booking_service.create_booking(None, payload)


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(booking_service, retreat):
    payload = booking_create(retreat.id, session_end=SESSION_START.replace(day=3))
    with pytest.raises(NotFound):
        await booking_service.create_booking(None, payload)


@pytest.mark.asyncio
async def test_unknown_retreat_is_not_found(booking_service):
    with pytest.raises(NotFound):
        await booking_service.create_booking(None, booking_create(MISSING_ID))


@pytest.mark.asyncio
async def test_price_is_frozen_at_creation(booking_service, db_session, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id, seat_count=1))

    await db_session.execute(update(RetreatSession).values(price=80000))
    await db_session.commit()

    reloaded = await booking_service.get_booking(booking.id)
    assert reloaded.total_price == SESSION_PRICE

    later = await booking_service.create_booking(None, booking_create(retreat.id, seat_count=1))
    assert later.total_price == 80000


@pytest.mark.asyncio
async def test_confirm_booking_sends_receipt(booking_service, notifier, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))

    confirmed = await booking_service.confirm_booking(booking.id, "pi_123")

    assert confirmed.state is BookingState.CONFIRMED_PAID
    assert confirmed.payment_intent_id == "pi_123"
    assert len(notifier.confirmations) == 1
    booking_id, retreat_title, attachment = notifier.confirmations[0]
    assert booking_id == booking.id
    assert retreat_title == "Alpine Retreat"
    assert attachment.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_duplicate_confirmation_is_a_noop(booking_service, notifier, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    first = await booking_service.confirm_booking(booking.id, "pi_123")

    again = await booking_service.confirm_booking(booking.id, "pi_123")

    assert again.id == first.id
    assert again.state is BookingState.CONFIRMED_PAID
    assert len(notifier.confirmations) == 1


@pytest.mark.asyncio
async def test_confirm_with_other_intent_is_invalid_state(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    await booking_service.confirm_booking(booking.id, "pi_123")

    with pytest.raises(InvalidState):
        await booking_service.confirm_booking(booking.id, "pi_other")


@pytest.mark.asyncio
async def test_confirm_cancelled_booking_is_invalid_state(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    await booking_service.cancel_booking(booking.id, "changed plans")

    with pytest.raises(InvalidState) as exc_info:
        await booking_service.confirm_booking(booking.id, "pi_123")
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_confirm_malformed_id(booking_service):
    with pytest.raises(InvalidArgument):
        await booking_service.confirm_booking("not-an-id", "pi_123")


@pytest.mark.asyncio
async def test_confirm_missing_booking(booking_service):
    with pytest.raises(NotFound):
        await booking_service.confirm_booking(MISSING_ID, "pi_123")


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_confirmation(db_session, notifier, retreat):
    notifier.explode = True
    service = BookingService(db_session, notifier)
    booking = await service.create_booking(None, booking_create(retreat.id))

    confirmed = await service.confirm_booking(booking.id, "pi_123")

    assert confirmed.state is BookingState.CONFIRMED_PAID


@pytest.mark.asyncio
async def test_cancel_booking_records_reason(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))

    cancelled = await booking_service.cancel_booking(booking.id, "changed plans")

    assert cancelled.state is BookingState.CANCELLED
    assert not cancelled.holds_seats
    assert cancelled.cancellation_reason == "changed plans"
    assert cancelled.cancelled_at is not None
    assert cancelled.payment_status == "PENDING"


@pytest.mark.asyncio
async def test_cancel_defaults_reason(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    cancelled = await booking_service.cancel_booking(booking.id)
    assert cancelled.cancellation_reason == "Cancelled"


@pytest.mark.asyncio
async def test_cancel_after_payment_failure(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    cancelled = await booking_service.cancel_booking(booking.id, "payment failed", payment_failed=True)
    assert (cancelled.status, cancelled.payment_status) == ("CANCELLED", "FAILED")


@pytest.mark.asyncio
async def test_recancel_keeps_original_reason_and_time(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    first = await booking_service.cancel_booking(booking.id, "first reason")
    cancelled_at = first.cancelled_at

    again = await booking_service.cancel_booking(booking.id, "second reason")

    assert again.cancellation_reason == "first reason"
    assert again.cancelled_at == cancelled_at


@pytest.mark.asyncio
async def test_cancel_confirmed_booking_keeps_paid_status(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))
    await booking_service.confirm_booking(booking.id, "pi_123")

    cancelled = await booking_service.cancel_booking(booking.id, "customer request")

    assert (cancelled.status, cancelled.payment_status) == ("CANCELLED", "PAID")


@pytest.mark.asyncio
async def test_admin_booking_is_confirmed_and_counts_against_capacity(booking_service, retreat):
    payload = AdminBookingCreate.model_validate({**booking_payload(retreat.id, seat_count=2), "user_id": "user-9"})
    booking = await booking_service.create_booking_by_admin(payload)

    assert booking.state is BookingState.CONFIRMED_PAID
    assert booking.source == "admin"
    assert booking.user_id == "user-9"
    assert booking.notes == "Created manually by admin"

    with pytest.raises(Conflict):
        await booking_service.create_booking(None, booking_create(retreat.id))


@pytest.mark.asyncio
async def test_list_user_bookings_newest_first(booking_service, session_factory):
    retreat = await create_retreat(session_factory, capacity=5)
    first = await booking_service.create_booking("user-1", booking_create(retreat.id))
    second = await booking_service.create_booking("user-1", booking_create(retreat.id))
    await booking_service.create_booking("user-2", booking_create(retreat.id))

    bookings = await booking_service.list_user_bookings("user-1")

    assert [b.id for b in bookings] == [second.id, first.id]
    assert len(await booking_service.list_bookings()) == 3


@pytest.mark.asyncio
async def test_delete_booking(booking_service, retreat):
    booking = await booking_service.create_booking(None, booking_create(retreat.id))

    await booking_service.delete_booking(booking.id)

    with pytest.raises(NotFound):
        await booking_service.get_booking(booking.id)


@pytest.mark.asyncio
async def test_stats(booking_service, session_factory):
    retreat = await create_retreat(session_factory, capacity=10)
    paid = await booking_service.create_booking(None, booking_create(retreat.id, seat_count=2))
    await booking_service.confirm_booking(paid.id, "pi_1")
    other_paid = await booking_service.create_booking(None, booking_create(retreat.id, seat_count=1))
    await booking_service.confirm_booking(other_paid.id, "pi_2")
    await booking_service.create_booking(None, booking_create(retreat.id))
    cancelled = await booking_service.create_booking(None, booking_create(retreat.id))
    await booking_service.cancel_booking(cancelled.id)

    stats = await booking_service.get_stats()

    assert stats.total == 4
    assert stats.pending == 1
    assert stats.confirmed == 2
    assert stats.cancelled == 1
    assert stats.completed == 0
    assert stats.revenue == 3 * SESSION_PRICE
    assert stats.average_booking_value == 1.5 * SESSION_PRICE


@pytest.mark.asyncio
async def test_stats_empty(booking_service):
    stats = await booking_service.get_stats()
    assert stats.total == 0
    assert stats.average_booking_value == 0.0
