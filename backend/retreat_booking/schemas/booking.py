"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from retreat_booking.db.base import to_utc


class Participant(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class BillingAddress(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=40)


class BookingCreate(BaseModel):
    retreat_id: str
    session_start: datetime
    session_end: datetime
    seat_count: int = Field(default=1, ge=1, le=20)
    # Length is deliberately not tied to seat_count: a lead booker may book for others.
    participants: list[Participant] = Field(..., min_length=1)
    billing_address: BillingAddress
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("session_start", "session_end")
    @classmethod
    def _normalise_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class AdminBookingCreate(BookingCreate):
    user_id: Optional[str] = None


class BookingResponse(BaseModel):
    id: str
    user_id: Optional[str]
    is_guest: bool
    source: str
    retreat_id: str
    retreat_name: str
    session_start: datetime
    session_end: datetime
    seat_count: int
    total_price: int
    currency: str
    status: str
    payment_status: str
    payment_intent_id: Optional[str]
    participants: list[Participant]
    notes: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingConfirmRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)


class BookingDeleteResponse(BaseModel):
    message: str
    booking_id: str


class SessionAvailability(BaseModel):
    session_start: datetime
    session_end: datetime
    capacity: int
    reserved: int
    available: int


class AvailabilityResponse(BaseModel):
    retreat_id: str
    session_start: datetime
    available_seats: int


class RetreatAvailabilityResponse(BaseModel):
    retreat_id: str
    sessions: list[SessionAvailability]


class BookingStats(BaseModel):
    total: int = 0
    pending: int = 0
    confirmed: int = 0
    cancelled: int = 0
    completed: int = 0
    revenue: int = 0
    average_booking_value: float = 0.0


class CleanupResponse(BaseModel):
    message: str
    cleaned_count: int
