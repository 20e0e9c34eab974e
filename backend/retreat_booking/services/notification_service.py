"""
Notifier implementations.

SmtpNotifier sends real mail; smtplib blocks, so every send runs in a worker
thread. LogNotifier only logs and is used when no SMTP host is configured.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.logging import get_logger
from retreat_booking.models.booking import Booking
from retreat_booking.models.retreat import Retreat
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.receipt_service import format_amount


def confirmation_body(booking: Booking, retreat: Retreat) -> str:
    return (
        f"Hello,\n\n"
        f"Your booking for {retreat.title} is confirmed.\n\n"
        f"Dates: {booking.session_start:%d/%m/%Y} to {booking.session_end:%d/%m/%Y}\n"
        f"Seats: {booking.seat_count}\n"
        f"Total paid: {format_amount(booking.total_price, booking.currency)}\n"
        f"Reference: {booking.id}\n\n"
        f"Your receipt is attached.\n"
    )


class SmtpNotifier(Notifier):

    def __init__(self, settings: Optional[Settings] = None, logger=None):
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    async def send_booking_confirmation(self, booking: Booking, retreat: Retreat, attachment: bytes) -> bool:
        recipient = booking.primary_email
        if not recipient:
            self.logger.warning("confirmation_email_skipped", booking_id=booking.id, reason="no_recipient")
            return False

        message = self._message(
            subject=f"Booking confirmed: {retreat.title}",
            to=recipient,
            body=confirmation_body(booking, retreat),
        )
        message.add_attachment(
            attachment,
            maintype="application",
            subtype="pdf",
            filename=f"receipt-{booking.id}.pdf",
        )
        return await self._send(message, kind="confirmation")

    async def send_admin_alert(self, subject: str, body: str) -> bool:
        message = self._message(subject=subject, to=self.settings.ADMIN_EMAIL, body=body)
        return await self._send(message, kind="alert")

    def _message(self, subject: str, to: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.settings.EMAIL_FROM
        message["To"] = to
        message.set_content(body)
        return message

    async def _send(self, message: EmailMessage, kind: str) -> bool:
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error("email_send_failed", kind=kind, recipient=message["To"], error=str(e))
            return False

        self.logger.info("email_sent", kind=kind, recipient=message["To"])
        return True

    def _deliver(self, message: EmailMessage) -> None:
        settings = self.settings
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(message)


class LogNotifier(Notifier):
    """Development notifier: writes what would have been sent to the log."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger(__name__)

    async def send_booking_confirmation(self, booking: Booking, retreat: Retreat, attachment: bytes) -> bool:
        self.logger.info(
            "confirmation_email_logged",
            booking_id=booking.id,
            recipient=booking.primary_email,
            retreat=retreat.title,
            attachment_bytes=len(attachment),
        )
        return True

    async def send_admin_alert(self, subject: str, body: str) -> bool:
        self.logger.warning("admin_alert_logged", subject=subject, body=body)
        return True
