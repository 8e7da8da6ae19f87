"""Gamma Markets order protocol — typed views over kind-16 / kind-17 events."""

from __future__ import annotations

from order_service.orders.codec import (
    ORDER_KIND,
    OrderMessageType,
    OrderStatus,
    PAYMENT_RECEIPT_KIND,
    build_payment_request,
    build_status_update,
    is_addressed_to,
    parse_order,
    parse_receipt,
)
from order_service.orders.models import OrderCreated, OrderItem, PaymentReceipt

__all__ = [
    "ORDER_KIND",
    "OrderMessageType",
    "OrderStatus",
    "PAYMENT_RECEIPT_KIND",
    "OrderCreated",
    "OrderItem",
    "PaymentReceipt",
    "build_payment_request",
    "build_status_update",
    "is_addressed_to",
    "parse_order",
    "parse_receipt",
]
