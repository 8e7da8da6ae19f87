"""Order protocol codec — raw events to typed messages and back.

Pure functions, no I/O. Tag arrays are inspected here and nowhere else:
the rest of the service only sees :class:`OrderCreated`,
:class:`PaymentReceipt` and :class:`EventTemplate` values.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from order_service.nostr.event import EventTemplate, now, tag_value, tag_values
from order_service.orders.models import OrderCreated, OrderItem, PaymentReceipt

if TYPE_CHECKING:
    from order_service.nostr.event import SignedEvent, Tag

ORDER_KIND = 16
PAYMENT_RECEIPT_KIND = 17

PAYMENT_REQUEST_CONTENT = "Please pay this invoice to complete your order"


class OrderMessageType(enum.StrEnum):
    """Values of the ``type`` tag on kind-16 events."""

    ORDER_CREATION = "1"
    PAYMENT_REQUEST = "2"
    STATUS_UPDATE = "3"
    SHIPPING_UPDATE = "4"


class OrderStatus(enum.StrEnum):
    """Values of the ``status`` tag on status-update events."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _value(tag: Tag | None, index: int = 1) -> str:
    if tag is None or len(tag) <= index:
        return ""
    return tag[index]


def _parse_int(raw: str) -> int | None:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def is_addressed_to(event: SignedEvent, pubkey: str) -> bool:
    """True if one of the event's ``p`` tags names *pubkey*."""
    return any(_value(tag) == pubkey for tag in tag_values(event.tags, "p"))


def parse_order(event: SignedEvent) -> OrderCreated | None:
    """Parse a kind-16 type-1 order creation event.

    Returns None for any other kind or type, and for events missing a usable
    ``order`` or ``amount`` tag. Never raises.
    """
    if event.kind != ORDER_KIND:
        return None
    if _value(tag_value(event.tags, "type")) != OrderMessageType.ORDER_CREATION:
        return None

    order_id = _value(tag_value(event.tags, "order"))
    amount = _parse_int(_value(tag_value(event.tags, "amount")))
    if not order_id or amount is None or amount <= 0:
        return None

    items = []
    for tag in tag_values(event.tags, "item"):
        ref = _value(tag)
        if not ref:
            continue
        quantity = _parse_int(_value(tag, 2))
        items.append(OrderItem(product_ref=ref, quantity=quantity if quantity and quantity > 0 else 1))

    phone = _value(tag_value(event.tags, "phone"))
    return OrderCreated(
        order_id=order_id,
        buyer_pubkey=event.pubkey,
        amount_sats=amount,
        items=tuple(items),
        address=_value(tag_value(event.tags, "address")),
        email=_value(tag_value(event.tags, "email")),
        phone=phone or None,
        message=event.content or None,
        event_id=event.id,
    )


def parse_receipt(event: SignedEvent) -> PaymentReceipt | None:
    """Parse a kind-17 payment receipt.

    The ``order`` and ``payment`` tags are mandatory; the amount defaults to 0.
    """
    if event.kind != PAYMENT_RECEIPT_KIND:
        return None

    order_id = _value(tag_value(event.tags, "order"))
    payment = tag_value(event.tags, "payment")
    method = _value(payment)
    if not order_id or not method:
        return None

    amount = _parse_int(_value(tag_value(event.tags, "amount")))
    return PaymentReceipt(
        order_id=order_id,
        buyer_pubkey=event.pubkey,
        payment_method=method,
        invoice=_value(payment, 2),
        proof=_value(payment, 3),
        amount_sats=amount if amount and amount > 0 else 0,
        event_id=event.id,
    )


def build_payment_request(
    order_id: str,
    buyer_pubkey: str,
    amount_sats: int,
    invoice: str,
) -> EventTemplate:
    """Build the kind-16 type-2 payment request answering an order."""
    return EventTemplate(
        kind=ORDER_KIND,
        tags=(
            ("p", buyer_pubkey),
            ("type", OrderMessageType.PAYMENT_REQUEST.value),
            ("order", order_id),
            ("amount", str(amount_sats)),
            ("payment", "lightning", invoice),
        ),
        content=PAYMENT_REQUEST_CONTENT,
        created_at=now(),
    )


def build_status_update(
    order_id: str,
    buyer_pubkey: str,
    status: OrderStatus | str,
    message: str = "",
) -> EventTemplate:
    """Build a kind-16 type-3 order status update."""
    return EventTemplate(
        kind=ORDER_KIND,
        tags=(
            ("p", buyer_pubkey),
            ("type", OrderMessageType.STATUS_UPDATE.value),
            ("order", order_id),
            ("status", str(status)),
        ),
        content=message,
        created_at=now(),
    )
