"""
Payment gateway interface.
The booking core talks to the payment network only through this contract.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from retreat_booking.schemas.payment import PaymentIntent, WebhookEvent


class PaymentGateway(ABC):
    """
    Implementations:
    - StripeGateway: Stripe PaymentIntents API
    - test doubles: in-memory gateways used by the test-suite
    """

    @abstractmethod
    async def create_payment_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        """
        Create a payment intent.

        Args:
            amount: Amount in minor currency units
            currency: ISO currency code
            metadata: Must contain the booking correlation id (bookingId)

        Returns:
            The created intent, including its client secret
        """

    @abstractmethod
    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Retrieve a payment intent by id."""

    @abstractmethod
    async def cancel_payment_intent(self, payment_intent_id: str) -> bool:
        """
        Cancel a payment intent.

        Returns:
            True if cancelled, False if the intent was already terminal
        """

    @abstractmethod
    async def list_successful_payments(self, since: datetime) -> list[PaymentIntent]:
        """Succeeded, non-refunded payments created at or after `since`."""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str, secret: str) -> WebhookEvent:
        """
        Verify and parse a webhook delivery.

        Raises:
            InvalidSignature: payload tampered, wrong secret, or unparsable
        """
