"""
Back-office endpoints. Every route requires an admin token.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from retreat_booking.api.dependencies import get_booking_service, get_reconciliation_service
from retreat_booking.core.security import require_admin
from retreat_booking.schemas.booking import (
    AdminBookingCreate,
    BookingCancelRequest,
    BookingConfirmRequest,
    BookingDeleteResponse,
    BookingResponse,
    BookingStats,
    CleanupResponse,
)
from retreat_booking.schemas.payment import AlertResponse, DiscrepancyReport
from retreat_booking.services.booking_service import BookingService
from retreat_booking.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])

ADMIN_CANCELLATION_REASON = "Cancelled by admin"


@router.get("/bookings", response_model=list[BookingResponse])
async def list_bookings(service: BookingService = Depends(get_booking_service)):
    return await service.list_bookings()


@router.get("/bookings/stats", response_model=BookingStats)
async def booking_stats(service: BookingService = Depends(get_booking_service)):
    return await service.get_stats()


@router.post("/bookings/cleanup", response_model=CleanupResponse)
async def cleanup_expired_bookings(service: ReconciliationService = Depends(get_reconciliation_service)):
    """Run the expired-booking sweep now instead of waiting for the scheduler."""
    cleaned = await service.cleanup_expired_bookings()
    return CleanupResponse(message=f"{cleaned} expired booking(s) deleted", cleaned_count=cleaned)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return await service.get_booking(booking_id)


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: AdminBookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    """Manual booking (phone, bank transfer...). Created confirmed and paid, capacity still applies."""
    return await service.create_booking_by_admin(booking_data)


@router.patch("/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str,
    confirm_data: BookingConfirmRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.confirm_booking(booking_id, confirm_data.payment_intent_id)


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    cancel_data: Optional[BookingCancelRequest] = Body(None),
    service: BookingService = Depends(get_booking_service),
):
    reason = cancel_data.reason if cancel_data and cancel_data.reason else ADMIN_CANCELLATION_REASON
    return await service.cancel_booking(booking_id, reason)


@router.delete("/bookings/{booking_id}", response_model=BookingDeleteResponse)
async def delete_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    await service.delete_booking(booking_id)
    return BookingDeleteResponse(message="Booking deleted", booking_id=booking_id)


@router.get("/payments/discrepancies", response_model=DiscrepancyReport)
async def payment_discrepancies(
    grace_period_minutes: int = Query(0, ge=0, le=24 * 60),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Successful gateway payments without a confirmed booking. Read-only."""
    return await service.check_payment_discrepancies(grace_period_minutes=grace_period_minutes)


@router.post("/payments/discrepancies/alert", response_model=AlertResponse)
async def send_discrepancy_alert(
    grace_period_minutes: int = Query(0, ge=0, le=24 * 60),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    report = await service.check_payment_discrepancies(grace_period_minutes=grace_period_minutes)
    if report.summary.total_discrepancies == 0:
        return AlertResponse(message="No discrepancies found", alert_sent=False, summary=report.summary)

    sent = await service.send_discrepancy_alert(report)
    message = "Alert sent to administrators" if sent else "Alert could not be delivered"
    return AlertResponse(message=message, alert_sent=sent, summary=report.summary)
