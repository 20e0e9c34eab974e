"""
Collaborator factory.
Configures which payment gateway and notifier the services talk to.
"""

from retreat_booking.core.config import get_settings
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway
from retreat_booking.services.notification_service import LogNotifier, SmtpNotifier
from retreat_booking.services.stripe_gateway import StripeGateway


def build_notifier() -> Notifier:
    """
    Notifier selection based on configuration:
    - SMTP_HOST set: SmtpNotifier (real mail)
    - otherwise: LogNotifier (development, mail is only logged)
    """
    if get_settings().SMTP_HOST:
        return SmtpNotifier()
    return LogNotifier()


# Singleton instances
_gateway: PaymentGateway = None
_notifier: Notifier = None


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton. Overridden in tests."""
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway


def get_notifier() -> Notifier:
    """Get notifier singleton. Overridden in tests."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier
