"""
Service interfaces for dependency inversion.
Allows swapping the payment provider and mail transport without changing
booking logic.
"""

from .payment_gateway import PaymentGateway
from .notifier import Notifier

__all__ = ['PaymentGateway', 'Notifier']
