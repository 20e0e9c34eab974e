from retreat_booking.models.retreat import Retreat, RetreatSession
from retreat_booking.models.booking import (
    Booking,
    BookingSource,
    BookingState,
    BookingStatus,
    PaymentStatus,
    SEAT_HOLDING_PAIRS,
)

__all__ = [
    "Retreat", "RetreatSession",
    "Booking", "BookingSource", "BookingState", "BookingStatus", "PaymentStatus",
    "SEAT_HOLDING_PAIRS",
]
