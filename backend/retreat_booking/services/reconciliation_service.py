"""
Background reconciliation between the bookings table and the gateway.

Two independent duties:

1. Cleanup: unpaid bookings older than BOOKING_EXPIRY_MINUTES stop holding
   seats. Each is claimed with a conditional DELETE, so a booking confirmed
   by a webhook in the meantime is left alone. The remote intent is
   cancelled first; if that fails the row is deleted anyway and a late
   payment shows up in the discrepancy check.

2. Discrepancy detection: succeeded, non-refunded gateway payments that no
   confirmed booking references. Detection only, fixing them is a human
   decision.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.logging import get_logger
from retreat_booking.core import metrics
from retreat_booking.db.base import utcnow
from retreat_booking.models.booking import Booking, BookingStatus, PaymentStatus
from retreat_booking.schemas.payment import (
    DiscrepancyReport,
    DiscrepancySummary,
    OrphanPayment,
    PaymentIntent,
    PaymentMetadata,
)
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway
from retreat_booking.services.receipt_service import format_amount

BOOKING_MISSING = "booking_missing"
BOOKING_NOT_CONFIRMED = "booking_not_confirmed"

# Bookings in these states account for a received payment
RECONCILED_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value)

NOT_AVAILABLE = "N/A"


class ReconciliationService:

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        notifier: Notifier,
        settings: Optional[Settings] = None,
        logger=None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_expired_bookings(self, now: Optional[datetime] = None) -> int:
        """Delete expired unpaid bookings. Returns how many rows were deleted."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.settings.BOOKING_EXPIRY_MINUTES)

        result = await self.db.execute(
            select(Booking.id, Booking.payment_intent_id)
            .where(
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at)
        )
        expired = result.all()
        await self.db.commit()

        if not expired:
            self.logger.info("cleanup_completed", found=0, deleted=0)
            return 0

        deleted = 0
        for booking_id, payment_intent_id in expired:
            log = self.logger.bind(booking_id=booking_id, payment_intent_id=payment_intent_id)

            if payment_intent_id:
                await self._cancel_remote_intent(payment_intent_id, log)

            try:
                delete_result = await self.db.execute(
                    delete(Booking)
                    .where(
                        Booking.id == booking_id,
                        Booking.status == BookingStatus.PENDING.value,
                        Booking.payment_status == PaymentStatus.PENDING.value,
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                log.error("expired_booking_delete_failed", error=str(e))
                continue

            if delete_result.rowcount:
                deleted += 1
                metrics.record_transition("expired")
                log.info("expired_booking_deleted")
            else:
                log.info("expired_booking_skipped", reason="no_longer_pending")

        metrics.expired_bookings_cleaned.inc(deleted)
        self.logger.info("cleanup_completed", found=len(expired), deleted=deleted)
        return deleted

    async def _cancel_remote_intent(self, payment_intent_id: str, log) -> None:
        try:
            cancelled = await self.gateway.cancel_payment_intent(payment_intent_id)
        except Exception as e:
            log.warning("expired_booking_intent_cancel_failed", error=str(e))
            return
        if not cancelled:
            log.warning("expired_booking_intent_not_cancellable")

    # ------------------------------------------------------------------
    # Discrepancies
    # ------------------------------------------------------------------

    async def check_payment_discrepancies(
        self,
        grace_period_minutes: int = 0,
        now: Optional[datetime] = None,
    ) -> DiscrepancyReport:
        now = now or utcnow()
        since = now - timedelta(days=self.settings.DISCREPANCY_LOOKBACK_DAYS)
        grace_cutoff = now - timedelta(minutes=grace_period_minutes)

        payments = await self.gateway.list_successful_payments(since)
        bookings_by_intent, bookings_by_id = await self._bookings_for(payments)

        orphans = []
        for payment in payments:
            booking = bookings_by_intent.get(payment.id)
            if booking is not None and booking.status in RECONCILED_STATUSES:
                continue

            if payment.created_at > grace_cutoff:
                self.logger.info("discrepancy_skipped_grace_period", payment_intent_id=payment.id)
                continue

            booking_id = PaymentMetadata.booking_id_of(payment.metadata)
            if booking is None and booking_id:
                booking = bookings_by_id.get(booking_id)
            orphans.append(self._orphan(payment, booking_id, booking))

        report = DiscrepancyReport(
            orphan_payments=orphans,
            summary=DiscrepancySummary(
                total_discrepancies=len(orphans),
                sessions_with_issues=len({(o.retreat_id, o.session_date) for o in orphans}),
                retreats_with_issues=len({o.retreat_id for o in orphans}),
            ),
            checked_payments=len(payments),
            grace_period_minutes=grace_period_minutes,
            generated_at=now,
        )
        metrics.payment_discrepancies.set(len(orphans))

        log = self.logger.warning if orphans else self.logger.info
        log(
            "discrepancy_check_completed",
            checked=len(payments),
            discrepancies=len(orphans),
            sessions=report.summary.sessions_with_issues,
        )
        return report

    async def _bookings_for(self, payments: list[PaymentIntent]) -> tuple[dict, dict]:
        """Bookings referenced by these payments, by intent id and by booking id."""
        if not payments:
            return {}, {}

        intent_ids = [p.id for p in payments]
        booking_ids = [b for b in (PaymentMetadata.booking_id_of(p.metadata) for p in payments) if b]

        clauses = [Booking.payment_intent_id.in_(intent_ids)]
        if booking_ids:
            clauses.append(Booking.id.in_(booking_ids))
        result = await self.db.execute(select(Booking).where(or_(*clauses)))
        bookings = result.scalars().all()

        by_intent = {}
        for booking in bookings:
            if not booking.payment_intent_id:
                continue
            # A confirmed booking wins over a cancelled one sharing the intent
            current = by_intent.get(booking.payment_intent_id)
            if current is None or booking.status in RECONCILED_STATUSES:
                by_intent[booking.payment_intent_id] = booking
        return by_intent, {booking.id: booking for booking in bookings}

    @staticmethod
    def _orphan(payment: PaymentIntent, booking_id: Optional[str], booking: Optional[Booking]) -> OrphanPayment:
        metadata = payment.metadata
        return OrphanPayment(
            payment_intent_id=payment.id,
            booking_id=booking_id or (booking.id if booking is not None else None),
            reason=BOOKING_NOT_CONFIRMED if booking is not None else BOOKING_MISSING,
            retreat_id=metadata.get("retreatId") or (booking.retreat_id if booking is not None else None),
            retreat_name=metadata.get("retreatName") or (booking.retreat_name if booking is not None else NOT_AVAILABLE),
            session_date=metadata.get("sessionDate") or (
                booking.session_start.isoformat() if booking is not None else NOT_AVAILABLE
            ),
            amount=payment.amount,
            currency=payment.currency,
            client_email=metadata.get("clientEmail") or NOT_AVAILABLE,
            created_at=payment.created_at,
        )

    # ------------------------------------------------------------------
    # Alerting
    # ------------------------------------------------------------------

    def build_alert_message(self, report: DiscrepancyReport) -> str:
        summary = report.summary
        lines = [
            "Payment discrepancies detected",
            "",
            "SUMMARY",
            f"- Total discrepancies: {summary.total_discrepancies}",
            f"- Sessions with issues: {summary.sessions_with_issues}",
            f"- Retreats with issues: {summary.retreats_with_issues}",
            "",
        ]

        if report.orphan_payments:
            lines.append("PAYMENTS WITHOUT A CONFIRMED BOOKING")
            for index, orphan in enumerate(report.orphan_payments, start=1):
                lines += [
                    f"{index}. {orphan.retreat_name}",
                    f"   Session date: {orphan.session_date}",
                    f"   Retreat id: {orphan.retreat_id or NOT_AVAILABLE}",
                    f"   Booking id: {orphan.booking_id or NOT_AVAILABLE} ({orphan.reason})",
                    f"   Payment intent: {orphan.payment_intent_id}",
                    f"   Client email: {orphan.client_email}",
                    f"   Amount: {format_amount(orphan.amount, orphan.currency)}",
                    f"   Paid at: {orphan.created_at:%d/%m/%Y %H:%M} UTC",
                    "",
                ]

        lines += [
            "ACTION REQUIRED",
            "Review these payments in the admin dashboard.",
            f"URL: {self.settings.FRONTEND_URL}/admin",
        ]
        return "\n".join(lines)

    async def send_discrepancy_alert(self, report: DiscrepancyReport) -> bool:
        """Alert the administrators. Nothing is sent for a clean report."""
        if report.summary.total_discrepancies == 0:
            return False

        subject = f"Payment discrepancies detected ({report.summary.total_discrepancies})"
        try:
            sent = await self.notifier.send_admin_alert(subject, self.build_alert_message(report))
        except Exception as e:
            self.logger.error("discrepancy_alert_failed", error=str(e))
            sent = False

        if not sent:
            metrics.record_notification_failure("alert")
            return False

        self.logger.info("discrepancy_alert_sent", discrepancies=report.summary.total_discrepancies)
        return True
