"""
Client booking endpoints with concurrency-safe seat reservation.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from retreat_booking.api.dependencies import get_booking_service
from retreat_booking.core.security import get_current_user_id, get_optional_user_id, get_token_payload, is_admin
from retreat_booking.models.booking import Booking
from retreat_booking.schemas.booking import BookingCancelRequest, BookingCreate, BookingResponse
from retreat_booking.services.booking_service import BookingService

router = APIRouter(prefix="/bookings", tags=["Bookings"])

CLIENT_CANCELLATION_REASON = "Cancelled by client"


def _ensure_owner(booking: Booking, payload: dict) -> None:
    if is_admin(payload) or booking.user_id == str(payload["sub"]):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: Optional[str] = Depends(get_optional_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """
    Reserve seats on a retreat session. Works for guests and signed-in users.

    The booking is held as pending for BOOKING_EXPIRY_MINUTES; pay it through
    POST /payments/checkout. Returns 409 when the session cannot fit the
    requested seats.
    """
    return await service.create_booking(user_id, booking_data)


@router.get("/me", response_model=list[BookingResponse])
async def list_my_bookings(
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Get all bookings for the authenticated user, newest first."""
    return await service.list_user_bookings(user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    payload: dict = Depends(get_token_payload),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    _ensure_owner(booking, payload)
    return booking


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    cancel_data: Optional[BookingCancelRequest] = Body(None),
    payload: dict = Depends(get_token_payload),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel one of your bookings and release its seats. Refunds are handled separately."""
    booking = await service.get_booking(booking_id)
    _ensure_owner(booking, payload)
    reason = cancel_data.reason if cancel_data and cancel_data.reason else CLIENT_CANCELLATION_REASON
    return await service.cancel_booking(booking.id, reason)
