"""
Notification dispatcher interface.

Delivery is fire-and-forget from the booking core's point of view:
implementations report failure by returning False and never raise.
"""

from abc import ABC, abstractmethod

from retreat_booking.models.booking import Booking
from retreat_booking.models.retreat import Retreat


class Notifier(ABC):

    @abstractmethod
    async def send_booking_confirmation(self, booking: Booking, retreat: Retreat, attachment: bytes) -> bool:
        """Send the confirmation email with the PDF receipt attached."""

    @abstractmethod
    async def send_admin_alert(self, subject: str, body: str) -> bool:
        """Send an operational alert to the administrators."""
