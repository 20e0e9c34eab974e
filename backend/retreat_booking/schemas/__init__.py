from retreat_booking.schemas.booking import (
    BookingCreate, AdminBookingCreate, BookingResponse, BookingStats,
    AvailabilityResponse, RetreatAvailabilityResponse,
)
from retreat_booking.schemas.payment import (
    PaymentIntent, PaymentMetadata, WebhookEvent, CheckoutSession, DiscrepancyReport,
)

__all__ = [
    "BookingCreate", "AdminBookingCreate", "BookingResponse", "BookingStats",
    "AvailabilityResponse", "RetreatAvailabilityResponse",
    "PaymentIntent", "PaymentMetadata", "WebhookEvent", "CheckoutSession", "DiscrepancyReport",
]
