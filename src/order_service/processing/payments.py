"""Payment processor — acknowledge each payment receipt exactly once."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from order_service.errors.service_errors import OrderServiceError
from order_service.orders.codec import (
    OrderStatus,
    build_status_update,
    is_addressed_to,
    parse_receipt,
)
from order_service.orders.messages import format_thank_you_dm

if TYPE_CHECKING:
    from collections.abc import Callable

    from order_service.cache.dedup import ProcessedSet
    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import SignedEvent
    from order_service.nostr.keys import Keys
    from order_service.orders.models import PaymentReceipt
    from order_service.processing.notifier import DirectMessenger
    from order_service.relay.resolver import RelaySetResolver
    from order_service.relay.transport import RelayTransport

logger = logging.getLogger(__name__)


class PaymentProcessor:
    """Acknowledges buyer payment receipts with a thank-you DM.

    Receipts are keyed by event id.  A receipt for an order this process
    never quoted is still acknowledged, with a warning.
    """

    def __init__(
        self,
        keys: Keys,
        processed: ProcessedSet,
        messenger: DirectMessenger,
        *,
        known_order: Callable[[str], bool] | None = None,
        transport: RelayTransport | None = None,
        resolver: RelaySetResolver | None = None,
        publish_status_updates: bool = False,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            keys: Merchant identity.
            processed: Shared idempotence state.
            messenger: DM sender for the thank-you note.
            known_order: Predicate telling whether an order id was seen.
            transport: Needed only for status updates.
            resolver: Needed only for status updates.
            publish_status_updates: Publish a ``confirmed`` status update
                after acknowledging a receipt.
            metrics: Optional metrics sink.
        """
        self._keys = keys
        self._processed = processed
        self._messenger = messenger
        self._known_order = known_order
        self._transport = transport
        self._resolver = resolver
        self._publish_status = publish_status_updates and transport is not None and resolver is not None
        self._metrics = metrics

    async def handle_event(self, event: SignedEvent) -> bool:
        """Process one raw event from the receipt stream.

        Returns:
            True if the receipt was acknowledged by this call.  Never raises.
        """
        if not is_addressed_to(event, self._keys.public_key):
            logger.debug("Ignoring receipt %s not addressed to the merchant", event.id[:8])
            return False
        receipt = parse_receipt(event)
        if receipt is None:
            logger.debug("Ignoring event %s: not a valid payment receipt", event.id[:8])
            return False

        if not self._processed.receipts.add_if_absent(event.id):
            logger.info("Receipt %s already processed, skipping", event.id[:8])
            if self._metrics:
                self._metrics.record_receipt("duplicate")
            return False

        if self._known_order is not None and not self._known_order(receipt.order_id):
            logger.warning(
                "Acknowledging receipt for unknown order %s from %s",
                receipt.short_id,
                receipt.buyer_pubkey[:8],
            )
        logger.info(
            "Payment receipt for order %s from %s (%s)",
            receipt.short_id,
            receipt.buyer_pubkey[:8],
            receipt.payment_method,
        )

        try:
            await self._acknowledge(receipt)
        except Exception:
            logger.exception("Unexpected error acknowledging receipt %s", event.id[:8])
        if self._metrics:
            self._metrics.record_receipt("acknowledged")
        return True

    async def _acknowledge(self, receipt: PaymentReceipt) -> None:
        dm = await self._messenger.send_dm(receipt.buyer_pubkey, format_thank_you_dm(receipt.order_id))
        if dm is None:
            logger.warning("Thank-you DM for order %s was not delivered", receipt.short_id)

        if not self._publish_status:
            return
        template = build_status_update(
            receipt.order_id,
            receipt.buyer_pubkey,
            OrderStatus.CONFIRMED,
            "Payment received",
        )
        try:
            targets = await self._resolver.publish_targets_for(receipt.buyer_pubkey)  # type: ignore[union-attr]
            await self._transport.publish(template, self._keys, targets)  # type: ignore[union-attr]
        except OrderServiceError as exc:
            logger.warning("Status update for order %s failed: %s", receipt.short_id, exc)
