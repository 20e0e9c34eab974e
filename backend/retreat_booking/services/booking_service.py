"""
Booking lifecycle with concurrency-safe seat reservation.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Availability is derived (capacity minus the seats held by live bookings),
  so reserving is a read followed by an insert. Two buyers can both read
  "1 seat left" and both insert. Result: oversell.

Solution:
  Every reservation bumps `retreat_sessions.version` in the same transaction
  as the booking insert, guarded by the version it read first:

  1. Read the session row (capacity, price, version)
  2. Sum the seats held for that session
  3. UPDATE retreat_sessions SET version = version + 1
     WHERE id = :session_id AND version = :read_version
  4. If rows_affected == 0, another reservation committed in between -> retry
  5. INSERT the booking and commit

  The version is read before the sum, so a reservation that commits after
  step 1 always invalidates step 3. In PostgreSQL the UPDATE takes the row
  lock: a concurrent loser blocks until the winner commits, then fails the
  version predicate and re-reads. The lock lives in the database, so this
  holds across any number of API instances.

  Releasing seats (cancel, cleanup) does not bump the version: freeing seats
  can only make a concurrent check pessimistic, never oversell.

State transitions use conditional UPDATEs (WHERE status = 'PENDING' ... for
confirm, WHERE status != 'CANCELLED' for cancel), so
confirm, cancel and the cleanup sweep cannot overwrite each other's result.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.exceptions import BookingError, Conflict, InvalidArgument, InvalidState, NotFound
from retreat_booking.core.logging import get_logger
from retreat_booking.core import metrics
from retreat_booking.models.booking import Booking, BookingSource, BookingStatus, PaymentStatus
from retreat_booking.models.retreat import RetreatSession
from retreat_booking.schemas.booking import AdminBookingCreate, BookingCreate, BookingStats
from retreat_booking.services.availability_service import get_reserved_seats
from retreat_booking.services.catalog_service import find_session, get_retreat, get_session_row, parse_id
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.receipt_service import ReceiptGenerator

DEFAULT_CANCELLATION_REASON = "Cancelled"
ADMIN_BOOKING_NOTE = "Created manually by admin"


class BookingService:

    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier,
        receipts: Optional[ReceiptGenerator] = None,
        settings: Optional[Settings] = None,
        logger=None,
    ):
        self.db = db
        self.notifier = notifier
        self.receipts = receipts or ReceiptGenerator()
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_booking(self, user_id: Optional[str], payload: BookingCreate) -> Booking:
        """
        Reserve seats for a checkout. The booking starts (PENDING, PENDING)
        and holds its seats until it is confirmed, cancelled or expired.
        The caller creates the gateway payment intent afterwards.
        """
        start = time.perf_counter()
        try:
            booking = await self._reserve(
                payload,
                user_id=user_id,
                source=BookingSource.CHECKOUT,
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                notes=payload.notes,
            )
        except Conflict:
            metrics.record_booking_attempt("conflict")
            raise
        except BookingError:
            metrics.record_booking_attempt("error")
            raise
        metrics.record_booking_attempt("success")
        metrics.booking_latency.observe(time.perf_counter() - start)
        return booking

    async def create_booking_by_admin(self, payload: AdminBookingCreate) -> Booking:
        """Manual booking taken outside the checkout: created confirmed and paid."""
        booking = await self._reserve(
            payload,
            user_id=payload.user_id,
            source=BookingSource.ADMIN,
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            notes=payload.notes or ADMIN_BOOKING_NOTE,
        )
        metrics.record_transition("admin_created")
        return booking

    async def _reserve(
        self,
        payload: BookingCreate,
        user_id: Optional[str],
        source: BookingSource,
        status: BookingStatus,
        payment_status: PaymentStatus,
        notes: Optional[str],
    ) -> Booking:
        seat_count = payload.seat_count
        if not 1 <= seat_count <= self.settings.MAX_SEATS_PER_BOOKING:
            raise InvalidArgument(
                f"seat_count must be between 1 and {self.settings.MAX_SEATS_PER_BOOKING}",
            )

        retreat = await get_retreat(self.db, payload.retreat_id)
        session = find_session(retreat, payload.session_start, payload.session_end)

        # Plain values: ORM instances are expired by the rollbacks below
        retreat_id = retreat.id
        retreat_name = retreat.title
        retreat_address = session.address or retreat.address
        session_start = session.start_at
        session_end = session.end_at

        log = self.logger.bind(retreat_id=retreat_id, session_start=session_start.isoformat())
        max_attempts = self.settings.BOOKING_MAX_RETRIES

        for attempt in range(1, max_attempts + 1):
            # Step 1: version first, then the reserved sum
            session = await get_session_row(self.db, retreat_id, session_start)
            read_version = session.version
            capacity = session.capacity
            unit_price = session.price
            session_id = session.id

            # Step 2: seats held by live bookings
            reserved = await get_reserved_seats(self.db, retreat_id, session_start)
            available = max(0, capacity - reserved)

            if seat_count > available:
                await self.db.rollback()
                log.warning(
                    "booking_failed_no_seats",
                    requested=seat_count,
                    available=available,
                    capacity=capacity,
                )
                raise Conflict(
                    f"Insufficient seats: requested {seat_count}, available {available}",
                    error_code="insufficient_seats",
                )

            # Step 3: claim the session version
            update_result = await self.db.execute(
                update(RetreatSession)
                .where(
                    RetreatSession.id == session_id,
                    RetreatSession.version == read_version,
                )
                .values(version=RetreatSession.version + 1)
                .execution_options(synchronize_session=False)
            )

            if update_result.rowcount == 0:
                metrics.booking_version_conflicts.inc()
                log.info("booking_retry", attempt=attempt, reason="version_conflict")
                await self.db.rollback()
                continue

            # Step 4: insert the booking, price frozen now
            booking = Booking(
                user_id=user_id,
                is_guest=user_id is None,
                source=source.value,
                retreat_id=retreat_id,
                retreat_name=retreat_name,
                retreat_address=retreat_address,
                session_start=session_start,
                session_end=session_end,
                seat_count=seat_count,
                total_price=unit_price * seat_count,
                currency=self.settings.CURRENCY,
                status=status.value,
                payment_status=payment_status.value,
                participants=[p.model_dump(mode="json") for p in payload.participants],
                billing_address=payload.billing_address.model_dump(mode="json"),
                notes=notes,
            )
            self.db.add(booking)
            await self.db.commit()
            await self.db.refresh(booking)

            log.info(
                "booking_created",
                booking_id=booking.id,
                user_id=user_id,
                guest=user_id is None,
                source=source.value,
                seats=seat_count,
                total_price=booking.total_price,
                attempt=attempt,
            )
            return booking

        log.warning("booking_failed_high_demand", attempts=max_attempts)
        raise Conflict(
            "Booking failed due to high demand. Please try again.",
            error_code="high_demand",
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def confirm_booking(self, booking_id: str, payment_intent_id: str) -> Booking:
        """
        Mark a pending booking confirmed and paid.

        A repeat for the same payment intent is answered with the booking as
        is (payment webhooks are delivered at least once). Anything else that
        is not pending is an InvalidState.
        """
        booking = await self.get_booking(booking_id)
        log = self.logger.bind(booking_id=booking.id, payment_intent_id=payment_intent_id)

        if self._already_confirmed_with(booking, payment_intent_id):
            log.info("booking_confirm_duplicate")
            return booking

        if booking.status != BookingStatus.PENDING.value:
            log.warning("booking_confirm_rejected", status=booking.status)
            raise InvalidState(f"Booking is not pending (status {booking.status})")

        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .values(
                status=BookingStatus.CONFIRMED.value,
                payment_status=PaymentStatus.PAID.value,
                payment_intent_id=payment_intent_id,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            # Lost a race against another confirm, a cancel or the cleanup sweep
            booking = await self.get_booking(booking_id)
            if self._already_confirmed_with(booking, payment_intent_id):
                log.info("booking_confirm_duplicate")
                return booking
            log.warning("booking_confirm_rejected", status=booking.status)
            raise InvalidState(f"Booking is not pending (status {booking.status})")

        await self.db.refresh(booking)
        metrics.record_transition("confirmed")
        log.info(
            "booking_confirmed",
            seats=booking.seat_count,
            total_price=booking.total_price,
        )

        await self._send_confirmation(booking)
        return booking

    @staticmethod
    def _already_confirmed_with(booking: Booking, payment_intent_id: str) -> bool:
        return (
            booking.status == BookingStatus.CONFIRMED.value
            and booking.payment_status == PaymentStatus.PAID.value
            and booking.payment_intent_id == payment_intent_id
        )

    async def _send_confirmation(self, booking: Booking) -> None:
        """PDF receipt + email. Failures are logged, never raised."""
        log = self.logger.bind(booking_id=booking.id)
        try:
            retreat = await get_retreat(self.db, booking.retreat_id)
            attachment = await asyncio.to_thread(self.receipts.render, booking)
            sent = await self.notifier.send_booking_confirmation(booking, retreat, attachment)
        except Exception as e:
            metrics.record_notification_failure("confirmation")
            log.error("booking_confirmation_email_failed", error=str(e))
            return

        if sent:
            log.info("booking_confirmation_email_sent", recipient=booking.primary_email)
        else:
            metrics.record_notification_failure("confirmation")
            log.error("booking_confirmation_email_failed", error="notifier reported failure")

    async def cancel_booking(
        self,
        booking_id: str,
        reason: Optional[str] = None,
        payment_failed: bool = False,
    ) -> Booking:
        """
        Cancel a booking, releasing its seats. Cancelling a cancelled booking
        returns it untouched: the first reason and timestamp are kept.
        With payment_failed only a pending, unpaid booking is cancelled; a
        booking confirmed in the meantime raises InvalidState.
        Refunds and remote intent cancellation are up to the caller.
        """
        booking = await self.get_booking(booking_id)
        log = self.logger.bind(booking_id=booking.id)

        if booking.status == BookingStatus.CANCELLED.value:
            log.info("booking_cancel_noop", reason=booking.cancellation_reason)
            return booking

        previous = booking.status
        now = datetime.now(timezone.utc)
        conditions = [
            Booking.id == booking.id,
            Booking.status != BookingStatus.CANCELLED.value,
        ]
        values = {
            "status": BookingStatus.CANCELLED.value,
            "cancellation_reason": reason or DEFAULT_CANCELLATION_REASON,
            "cancelled_at": now,
            "updated_at": now,
        }
        if payment_failed:
            conditions += [
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            ]
            values["payment_status"] = PaymentStatus.FAILED.value

        result = await self.db.execute(
            update(Booking)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            # Deleted by the cleanup sweep (NotFound), cancelled or confirmed meanwhile
            booking = await self.get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                log.info("booking_cancel_noop", reason=booking.cancellation_reason)
                return booking
            log.warning("booking_cancel_rejected", status=booking.status, payment_failed=payment_failed)
            raise InvalidState(f"Booking is not pending (status {booking.status})")

        await self.db.refresh(booking)

        metrics.record_transition("cancelled")
        log.info(
            "booking_cancelled",
            previous_status=previous,
            payment_status=booking.payment_status,
            reason=booking.cancellation_reason,
            seats_released=booking.seat_count,
        )
        return booking

    async def delete_booking(self, booking_id: str) -> None:
        """Admin removal of a booking row."""
        booking = await self.get_booking(booking_id)
        await self.db.delete(booking)
        await self.db.commit()
        metrics.record_transition("deleted")
        self.logger.info("booking_deleted", booking_id=booking.id, status=booking.status)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: str) -> Booking:
        booking_id = parse_id(booking_id, kind="booking")
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()

        if not booking:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    async def list_user_bookings(self, user_id: str) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_bookings(self) -> list[Booking]:
        result = await self.db.execute(select(Booking).order_by(Booking.created_at.desc()))
        return list(result.scalars().all())

    async def get_stats(self) -> BookingStats:
        def count_status(status: BookingStatus):
            return func.coalesce(func.sum(case((Booking.status == status.value, 1), else_=0)), 0)

        confirmed_paid = and_(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.payment_status == PaymentStatus.PAID.value,
        )
        result = await self.db.execute(
            select(
                func.count(Booking.id),
                count_status(BookingStatus.PENDING),
                count_status(BookingStatus.CONFIRMED),
                count_status(BookingStatus.CANCELLED),
                count_status(BookingStatus.COMPLETED),
                func.coalesce(func.sum(case((confirmed_paid, Booking.total_price), else_=0)), 0),
                func.coalesce(func.sum(case((confirmed_paid, 1), else_=0)), 0),
            )
        )
        total, pending, confirmed, cancelled, completed, revenue, paid_count = result.one()

        return BookingStats(
            total=int(total),
            pending=int(pending),
            confirmed=int(confirmed),
            cancelled=int(cancelled),
            completed=int(completed),
            revenue=int(revenue),
            average_booking_value=round(int(revenue) / int(paid_count), 2) if paid_count else 0.0,
        )
