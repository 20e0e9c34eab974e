"""
Stripe implementation of the payment gateway.

The stripe SDK is synchronous: every call runs in a worker thread and is
bounded by STRIPE_TIMEOUT_SECONDS, so a slow Stripe never stalls the event
loop or holds a request open indefinitely.
"""

import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

import stripe

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.exceptions import InvalidSignature, UpstreamFailure
from retreat_booking.core.logging import get_logger
from retreat_booking.core.metrics import record_gateway_error
from retreat_booking.schemas.payment import PaymentIntent, WebhookEvent
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
LIST_PAGE_SIZE = 100


def to_payment_intent(obj: Any) -> PaymentIntent:
    """Convert a stripe PaymentIntent object into our value object."""
    metadata = getattr(obj, "metadata", None) or {}
    return PaymentIntent(
        id=obj.id,
        status=obj.status,
        amount=obj.amount,
        amount_received=getattr(obj, "amount_received", None) or 0,
        currency=obj.currency,
        metadata={key: str(metadata[key]) for key in metadata.keys()},
        client_secret=getattr(obj, "client_secret", None),
        created_at=datetime.fromtimestamp(obj.created, tz=timezone.utc),
    )


def construct_webhook_event(payload: bytes, signature: str, secret: str) -> WebhookEvent:
    """
    Verify a Stripe-Signature header and parse the event.

    Raises:
        InvalidSignature: bad or missing signature, stale timestamp, bad JSON
    """
    if not signature:
        raise InvalidSignature("Missing Stripe-Signature header")
    if not secret:
        raise InvalidSignature("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        raise InvalidSignature("Invalid webhook signature")
    except ValueError as e:
        logger.warning("webhook_payload_invalid", error=str(e))
        raise InvalidSignature("Invalid webhook payload")

    obj = event.data.object
    intent = to_payment_intent(obj) if getattr(obj, "object", None) == "payment_intent" else None
    return WebhookEvent(id=event.id, type=event.type, payment_intent=intent)


class StripeGateway(PaymentGateway):

    def __init__(self, settings: Optional[Settings] = None, logger=None):
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)
        stripe.api_version = self.settings.STRIPE_API_VERSION

    async def _call(self, operation: str, fn, *args, **kwargs):
        if not self.settings.STRIPE_SECRET_KEY:
            raise UpstreamFailure("Stripe is not configured", error_code="gateway_not_configured")

        kwargs["api_key"] = self.settings.STRIPE_SECRET_KEY
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(fn, *args, **kwargs)),
                timeout=self.settings.STRIPE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            record_gateway_error(operation)
            self.logger.error("stripe_timeout", operation=operation, timeout=self.settings.STRIPE_TIMEOUT_SECONDS)
            raise UpstreamFailure(f"Stripe {operation} timed out", error_code="gateway_timeout")
        except stripe.StripeError as e:
            record_gateway_error(operation)
            self.logger.error("stripe_error", operation=operation, error=str(e), code=getattr(e, "code", None))
            raise UpstreamFailure(f"Stripe {operation} failed: {e.user_message or e}")

    async def create_payment_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        pi = await self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        self.logger.info("stripe_payment_intent_created", payment_intent_id=pi.id, amount=amount)
        return to_payment_intent(pi)

    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        pi = await self._call("get_payment_intent", stripe.PaymentIntent.retrieve, payment_intent_id)
        return to_payment_intent(pi)

    async def cancel_payment_intent(self, payment_intent_id: str) -> bool:
        try:
            pi = await self._call("cancel_payment_intent", stripe.PaymentIntent.cancel, payment_intent_id)
        except UpstreamFailure:
            # Already succeeded or cancelled intents cannot be cancelled
            current = await self.get_payment_intent(payment_intent_id)
            if current.status in ("canceled", SUCCEEDED):
                self.logger.info(
                    "stripe_payment_intent_not_cancellable",
                    payment_intent_id=payment_intent_id,
                    status=current.status,
                )
                return False
            raise
        self.logger.info("stripe_payment_intent_cancelled", payment_intent_id=pi.id, status=pi.status)
        return pi.status == "canceled"

    async def list_successful_payments(self, since: datetime) -> list[PaymentIntent]:
        return await self._call("list_successful_payments", self._list_successful_payments_sync, since)

    def _list_successful_payments_sync(self, since: datetime, api_key: str) -> list[PaymentIntent]:
        """Succeeded intents with money received and no refund, newest first."""
        page = stripe.PaymentIntent.list(
            created={"gte": int(since.timestamp())},
            limit=LIST_PAGE_SIZE,
            api_key=api_key,
        )
        payments = []
        for pi in page.auto_paging_iter():
            if pi.status != SUCCEEDED or not pi.amount_received:
                continue
            refunds = stripe.Refund.list(payment_intent=pi.id, limit=1, api_key=api_key)
            if refunds.data:
                continue
            payments.append(to_payment_intent(pi))
        return payments

    def verify_webhook_signature(self, payload: bytes, signature: str, secret: str) -> WebhookEvent:
        return construct_webhook_event(payload, signature, secret)
