"""Order protocol data models.

Dataclasses representing the parsed order-protocol messages:
- OrderItem — one ``item`` tag (product reference + quantity)
- OrderCreated — kind-16 type-1 order creation
- PaymentReceipt — kind-17 payment receipt
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OrderItem:
    """A single ordered product.

    Attributes:
        product_ref: Product address, e.g. ``30402:<pubkey>:<d-tag>``.
        quantity: Number of units, at least 1.
    """

    product_ref: str
    quantity: int = 1


@dataclass(frozen=True, slots=True)
class OrderCreated:
    """A buyer's order, parsed from a kind-16 type-1 event.

    Attributes:
        order_id: Opaque order identifier, the idempotence key.
        buyer_pubkey: Author of the order event.
        amount_sats: Total amount to invoice, in satoshis.
        items: Ordered products.
        address: Shipping address, empty if absent.
        email: Contact email, empty if absent.
        phone: Contact phone, None if absent.
        message: Free-form buyer note (event content), None if empty.
        event_id: Id of the source event.
    """

    order_id: str
    buyer_pubkey: str
    amount_sats: int
    items: tuple[OrderItem, ...] = ()
    address: str = ""
    email: str = ""
    phone: str | None = None
    message: str | None = None
    event_id: str = ""

    @property
    def short_id(self) -> str:
        """First 8 characters of the order id, used in logs and messages."""
        return self.order_id[:8]


@dataclass(frozen=True, slots=True)
class PaymentReceipt:
    """A buyer's payment receipt, parsed from a kind-17 event.

    Attributes:
        order_id: Order the payment refers to.
        buyer_pubkey: Author of the receipt event.
        payment_method: Payment medium, e.g. ``lightning``.
        invoice: The invoice that was paid.
        proof: Payment proof (preimage), empty if absent.
        amount_sats: Paid amount, 0 when absent or unparsable.
        event_id: Id of the receipt event, the idempotence key.
    """

    order_id: str
    buyer_pubkey: str
    payment_method: str
    invoice: str = ""
    proof: str = ""
    amount_sats: int = 0
    event_id: str = ""

    @property
    def short_id(self) -> str:
        """First 8 characters of the order id."""
        return self.order_id[:8]
