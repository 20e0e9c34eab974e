"""
Payment-side schemas: gateway value objects, the booking correlation
metadata carried on every payment intent, and reconciliation reports.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from retreat_booking.core.exceptions import InvalidArgument


class PaymentIntent(BaseModel):
    id: str
    status: str
    amount: int
    amount_received: int = 0
    currency: str
    metadata: dict[str, str] = Field(default_factory=dict)
    client_secret: Optional[str] = None
    created_at: datetime


class WebhookEvent(BaseModel):
    id: str
    type: str
    payment_intent: Optional[PaymentIntent] = None


class PaymentMetadata(BaseModel):
    """
    Join key between a gateway payment and a local booking.

    `booking_id` is mandatory: a payment that loses it cannot be reconciled.
    Everything else is denormalised context for humans reading the gateway
    dashboard or a discrepancy alert.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    booking_id: UUID
    retreat_id: Optional[str] = None
    retreat_name: Optional[str] = None
    session_date: Optional[str] = None
    client_email: Optional[str] = None
    source: str = "retreat-booking"

    def to_gateway(self) -> dict[str, str]:
        data = self.model_dump(exclude_none=True, by_alias=True)
        return {key: str(value) for key, value in data.items()}

    @classmethod
    def from_gateway(cls, metadata: Optional[dict[str, Any]]) -> "PaymentMetadata":
        try:
            return cls.model_validate(metadata or {})
        except ValidationError as exc:
            raise InvalidArgument(f"Payment metadata has no valid bookingId: {exc.errors()[0]['msg']}")

    @staticmethod
    def booking_id_of(metadata: Optional[dict[str, Any]]) -> Optional[str]:
        """Lenient lookup used for reporting: None when absent or malformed."""
        raw = (metadata or {}).get("bookingId")
        try:
            return str(UUID(str(raw))) if raw else None
        except ValueError:
            return None


class CheckoutRequest(BaseModel):
    booking_id: str


class CheckoutSession(BaseModel):
    booking_id: str
    payment_intent_id: str
    client_secret: Optional[str]
    amount: int
    currency: str


class WebhookResult(BaseModel):
    event_id: str
    event_type: str
    handled: bool
    booking_id: Optional[str] = None
    detail: Optional[str] = None


class OrphanPayment(BaseModel):
    payment_intent_id: str
    booking_id: Optional[str]
    reason: str  # booking_missing | booking_not_confirmed
    retreat_id: Optional[str]
    retreat_name: str
    session_date: str
    amount: int
    currency: str
    client_email: str
    created_at: datetime


class DiscrepancySummary(BaseModel):
    total_discrepancies: int = 0
    sessions_with_issues: int = 0
    retreats_with_issues: int = 0


class DiscrepancyReport(BaseModel):
    orphan_payments: list[OrphanPayment] = Field(default_factory=list)
    summary: DiscrepancySummary = Field(default_factory=DiscrepancySummary)
    checked_payments: int = 0
    grace_period_minutes: int = 0
    generated_at: datetime


class AlertResponse(BaseModel):
    message: str
    alert_sent: bool
    summary: DiscrepancySummary
