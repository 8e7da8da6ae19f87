"""Encrypted direct-message notifications to buyers (NIP-04)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from order_service.errors.service_errors import OrderServiceError
from order_service.nostr.nip04 import build_direct_message

if TYPE_CHECKING:
    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import SignedEvent
    from order_service.nostr.keys import Keys
    from order_service.relay.resolver import RelaySetResolver
    from order_service.relay.transport import RelayTransport

logger = logging.getLogger(__name__)


class DirectMessenger:
    """Sends best-effort encrypted DMs from the merchant identity."""

    def __init__(
        self,
        keys: Keys,
        transport: RelayTransport,
        resolver: RelaySetResolver,
        *,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self._keys = keys
        self._transport = transport
        self._resolver = resolver
        self._metrics = metrics

    async def send_dm(self, recipient_pubkey: str, text: str) -> SignedEvent | None:
        """Encrypt *text* for *recipient_pubkey* and publish it.

        Returns:
            The published DM event, or None if delivery failed.  Failures are
            logged and never raised.
        """
        try:
            template = build_direct_message(self._keys, recipient_pubkey, text)
            relays = await self._resolver.publish_targets_for(recipient_pubkey)
            event = await self._transport.publish(template, self._keys, relays)
        except (OrderServiceError, ValueError) as exc:
            logger.warning("Failed to send DM to %s: %s", recipient_pubkey[:8], exc)
            if self._metrics:
                self._metrics.record_notification("failed")
            return None

        logger.info("Sent DM %s to %s", event.id[:8], recipient_pubkey[:8])
        if self._metrics:
            self._metrics.record_notification("sent")
        return event
