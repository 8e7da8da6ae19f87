"""Order processor — one invoice and one payment request per order id.

Lifecycle per order id::

    unseen -> PROCESSING -> COMPLETED
                         -> FAILED      (terminal, never retried)

The order id is claimed in the shared :class:`ProcessedSet` before any I/O,
so a resubmitted or relay-duplicated order is short-circuited even while the
first copy is still in flight, and a failed order stays claimed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from order_service.errors.lightning_errors import LightningError
from order_service.errors.relay_errors import PublishError
from order_service.errors.service_errors import OrderServiceError
from order_service.nostr.event import now
from order_service.orders.codec import build_payment_request, is_addressed_to, parse_order
from order_service.orders.messages import format_invoice_dm

if TYPE_CHECKING:
    from order_service.cache.dedup import ProcessedSet
    from order_service.lightning.gateway import InvoiceGateway
    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import SignedEvent
    from order_service.nostr.keys import Keys
    from order_service.orders.models import OrderCreated
    from order_service.processing.notifier import DirectMessenger
    from order_service.relay.resolver import RelaySetResolver
    from order_service.relay.transport import RelayTransport

logger = logging.getLogger(__name__)


class OrderState(enum.StrEnum):
    """Processing state of one order id."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IssuedInvoice:
    """An invoice minted for an order, recorded before it is published.

    ``published`` stays False when the payment request never reached a
    relay, which leaves a live invoice the buyer was never told about.
    """

    order_id: str
    buyer_pubkey: str
    amount_sats: int
    invoice: str
    issued_at: int = field(default_factory=now)
    published: bool = False
    request_event_id: str = ""


class OrderProcessor:
    """Turns incoming order events into invoices and payment requests."""

    def __init__(
        self,
        keys: Keys,
        gateway: InvoiceGateway,
        resolver: RelaySetResolver,
        transport: RelayTransport,
        processed: ProcessedSet,
        messenger: DirectMessenger,
        *,
        dm_delay: float = 2.0,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self._keys = keys
        self._gateway = gateway
        self._resolver = resolver
        self._transport = transport
        self._processed = processed
        self._messenger = messenger
        self._dm_delay = dm_delay
        self._metrics = metrics
        self._states: dict[str, OrderState] = {}
        self._invoices: dict[str, IssuedInvoice] = {}

    @property
    def states(self) -> dict[str, OrderState]:
        """State per order id handled by this process (copy)."""
        return dict(self._states)

    @property
    def issued_invoices(self) -> dict[str, IssuedInvoice]:
        """Invoices minted per order id (copy)."""
        return dict(self._invoices)

    def knows_order(self, order_id: str) -> bool:
        """Whether *order_id* has been claimed by this process."""
        return order_id in self._processed.orders

    async def handle_event(self, event: SignedEvent) -> OrderState | None:
        """Process one raw event from the order stream.

        Returns:
            The order's final state, or None if the event was not a new order
            for this merchant.  Never raises.
        """
        if not is_addressed_to(event, self._keys.public_key):
            logger.debug("Ignoring event %s not addressed to the merchant", event.id[:8])
            return None
        order = parse_order(event)
        if order is None:
            logger.debug("Ignoring event %s: not a valid order", event.id[:8])
            return None

        if not self._processed.orders.add_if_absent(order.order_id):
            logger.info("Order %s already processed, skipping", order.short_id)
            if self._metrics:
                self._metrics.record_order("duplicate")
            return None

        self._states[order.order_id] = OrderState.PROCESSING
        logger.info(
            "New order %s from %s: %d sats", order.short_id, order.buyer_pubkey[:8], order.amount_sats
        )
        try:
            state = await self._process(order)
        except Exception:
            logger.exception("Unexpected error processing order %s", order.short_id)
            state = OrderState.FAILED

        self._states[order.order_id] = state
        if self._metrics:
            self._metrics.record_order(state.value)
        return state

    async def _process(self, order: OrderCreated) -> OrderState:
        try:
            if self._metrics:
                with self._metrics.track_invoice_request():
                    invoice = await self._gateway.generate_invoice(order.amount_sats, order.order_id)
            else:
                invoice = await self._gateway.generate_invoice(order.amount_sats, order.order_id)
        except LightningError as exc:
            logger.error("Invoice generation failed for order %s: %s", order.short_id, exc)
            return OrderState.FAILED

        issued = IssuedInvoice(
            order_id=order.order_id,
            buyer_pubkey=order.buyer_pubkey,
            amount_sats=order.amount_sats,
            invoice=invoice,
        )
        self._invoices[order.order_id] = issued

        template = build_payment_request(
            order.order_id, order.buyer_pubkey, order.amount_sats, invoice
        )
        targets = await self._resolver.publish_targets_for(order.buyer_pubkey)
        try:
            request = await self._transport.publish(template, self._keys, targets)
        except PublishError as exc:
            logger.error(
                "Payment request for order %s reached no relay (%s); unpublished invoice: %s",
                order.short_id,
                exc,
                invoice,
            )
            return OrderState.FAILED
        except OrderServiceError as exc:
            logger.error("Payment request for order %s failed: %s", order.short_id, exc)
            return OrderState.FAILED

        issued.published = True
        issued.request_event_id = request.id
        logger.info("Sent payment request %s for order %s", request.id[:8], order.short_id)

        if self._dm_delay > 0:
            await asyncio.sleep(self._dm_delay)
        dm = await self._messenger.send_dm(
            order.buyer_pubkey,
            format_invoice_dm(order.order_id, order.amount_sats, invoice),
        )
        if dm is None:
            logger.warning("Invoice DM for order %s was not delivered", order.short_id)
        return OrderState.COMPLETED
