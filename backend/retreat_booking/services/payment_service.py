"""
Checkout and payment webhook handling.

The gateway is the source of truth for money, the bookings table for seats.
They are joined by the `bookingId` carried in every payment intent's
metadata. Webhooks are delivered at least once and in any order, so every
handler tolerates repeats and bookings that moved on or no longer exist.
"""

from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.exceptions import Conflict, InvalidArgument, InvalidState, NotFound, UpstreamFailure
from retreat_booking.core.logging import get_logger
from retreat_booking.models.booking import Booking, BookingStatus, PaymentStatus
from retreat_booking.schemas.payment import CheckoutSession, PaymentIntent, PaymentMetadata, WebhookResult
from retreat_booking.services.booking_service import BookingService
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_FAILED_REASON = "payment failed"

# Intent states from which a checkout cannot be resumed
TERMINAL_INTENT_STATES = ("canceled", "succeeded")


class PaymentService:

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_service: BookingService,
        settings: Optional[Settings] = None,
        logger=None,
    ):
        self.db = db
        self.gateway = gateway
        self.bookings = booking_service
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    async def start_checkout(self, booking_id: str) -> CheckoutSession:
        """
        Create the payment intent for a pending booking, or hand back the one
        already attached if it can still be paid.
        """
        booking = await self.bookings.get_booking(booking_id)
        log = self.logger.bind(booking_id=booking.id)

        if (booking.status, booking.payment_status) != (BookingStatus.PENDING.value, PaymentStatus.PENDING.value):
            raise InvalidState(f"Booking is not awaiting payment (status {booking.status})")

        if booking.payment_intent_id:
            existing = await self.gateway.get_payment_intent(booking.payment_intent_id)
            if existing.status not in TERMINAL_INTENT_STATES:
                log.info("checkout_reused", payment_intent_id=existing.id)
                return self._checkout_session(booking, existing)

        metadata = PaymentMetadata(
            booking_id=booking.id,
            retreat_id=booking.retreat_id,
            retreat_name=booking.retreat_name,
            session_date=booking.session_start.isoformat(),
            client_email=booking.primary_email,
        )
        intent = await self.gateway.create_payment_intent(
            amount=booking.total_price,
            currency=booking.currency,
            metadata=metadata.to_gateway(),
        )

        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .values(payment_intent_id=intent.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            # Expired or cancelled while the intent was being created
            await self._release_intent(intent.id, log)
            raise InvalidState("Booking is no longer awaiting payment")

        booking.payment_intent_id = intent.id
        log.info("checkout_started", payment_intent_id=intent.id, amount=intent.amount)
        return self._checkout_session(booking, intent)

    async def _release_intent(self, payment_intent_id: str, log) -> None:
        try:
            await self.gateway.cancel_payment_intent(payment_intent_id)
        except UpstreamFailure as e:
            log.warning("checkout_intent_release_failed", payment_intent_id=payment_intent_id, error=str(e))

    @staticmethod
    def _checkout_session(booking: Booking, intent: PaymentIntent) -> CheckoutSession:
        return CheckoutSession(
            booking_id=booking.id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
        )

    async def handle_webhook(self, payload: bytes, signature: str) -> WebhookResult:
        """
        Verify and apply a gateway event.

        Rejections by the booking lifecycle (missing booking, wrong state) are
        acknowledged so the gateway stops redelivering; anything unexpected
        propagates and the gateway retries later.
        """
        event = self.gateway.verify_webhook_signature(
            payload, signature, self.settings.STRIPE_WEBHOOK_SECRET,
        )
        log = self.logger.bind(event_id=event.id, event_type=event.type)
        handlers = {
            PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            PAYMENT_FAILED: self._on_payment_failed,
        }
        handler = handlers.get(event.type)
        intent = event.payment_intent

        if handler is None or intent is None:
            log.info("webhook_event_ignored")
            return WebhookResult(event_id=event.id, event_type=event.type, handled=False, detail="ignored")

        try:
            metadata = PaymentMetadata.from_gateway(intent.metadata)
        except InvalidArgument as e:
            log.error("webhook_payment_unreconcilable", payment_intent_id=intent.id, error=str(e))
            return WebhookResult(event_id=event.id, event_type=event.type, handled=False, detail=str(e))

        booking_id = str(metadata.booking_id)
        log = log.bind(booking_id=booking_id, payment_intent_id=intent.id)

        try:
            handled, detail = await handler(booking_id, intent)
        except (NotFound, Conflict) as e:
            log.warning("webhook_booking_rejected", error=str(e), error_code=e.error_code)
            return WebhookResult(
                event_id=event.id,
                event_type=event.type,
                handled=False,
                booking_id=booking_id,
                detail=str(e),
            )

        log.info("webhook_processed", handled=handled, detail=detail)
        return WebhookResult(
            event_id=event.id,
            event_type=event.type,
            handled=handled,
            booking_id=booking_id,
            detail=detail,
        )

    async def _on_payment_succeeded(self, booking_id: str, intent: PaymentIntent) -> tuple[bool, str]:
        booking = await self.bookings.confirm_booking(booking_id, intent.id)
        return True, f"booking {booking.status.lower()}"

    async def _on_payment_failed(self, booking_id: str, intent: PaymentIntent) -> tuple[bool, str]:
        booking = await self.bookings.get_booking(booking_id)
        if booking.status != BookingStatus.PENDING.value:
            return False, f"booking not pending (status {booking.status})"

        await self.bookings.cancel_booking(booking_id, PAYMENT_FAILED_REASON, payment_failed=True)
        return True, "booking cancelled"
