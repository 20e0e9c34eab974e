"""
Checkout and gateway webhook endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from retreat_booking.api.dependencies import get_payment_service
from retreat_booking.schemas.payment import CheckoutRequest, CheckoutSession, WebhookResult
from retreat_booking.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/checkout", response_model=CheckoutSession)
async def start_checkout(
    checkout_data: CheckoutRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Create the payment intent for a pending booking. The returned
    client_secret is used by the browser to complete the payment.
    The booking id is the capability here, so guests can pay too.
    """
    return await service.start_checkout(checkout_data.booking_id)


@router.post("/webhook", response_model=WebhookResult)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Stripe webhook. The signature covers the exact bytes received, so the
    raw body is passed through untouched.
    """
    payload = await request.body()
    return await service.handle_webhook(payload, stripe_signature or "")
