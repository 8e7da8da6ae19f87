"""Processing — order and payment-receipt state machines."""

from __future__ import annotations

from order_service.processing.notifier import DirectMessenger
from order_service.processing.orders import IssuedInvoice, OrderProcessor, OrderState
from order_service.processing.payments import PaymentProcessor

__all__ = [
    "DirectMessenger",
    "IssuedInvoice",
    "OrderProcessor",
    "OrderState",
    "PaymentProcessor",
]
