"""
FastAPI providers wiring request-scoped services to their collaborators.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.core.logging import get_logger
from retreat_booking.db.session import get_db
from retreat_booking.services.booking_service import BookingService
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway
from retreat_booking.services.payment_service import PaymentService
from retreat_booking.services.reconciliation_service import ReconciliationService
from retreat_booking.services.strategy_factory import get_notifier, get_payment_gateway


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(db, notifier, logger=get_logger("retreat_booking.bookings"))


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentService:
    return PaymentService(db, gateway, booking_service, logger=get_logger("retreat_booking.payments"))


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, notifier, logger=get_logger("retreat_booking.reconciliation"))
