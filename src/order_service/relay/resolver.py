"""Relay set resolver — NIP-65 relay list lookup with a short-lived cache."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from order_service.errors.service_errors import OrderServiceError
from order_service.nostr.event import KIND_RELAY_LIST, tag_values
from order_service.nostr.filters import Filter
from order_service.relay.models import merge_relays, normalize_relay_url

if TYPE_CHECKING:
    from collections.abc import Sequence

    from order_service.relay.transport import RelayTransport

logger = logging.getLogger(__name__)


class RelaySetResolver:
    """Decide which relays an event for a given pubkey should go to.

    Publish targets are the merchant's own relays plus whatever the
    recipient advertises in its kind-10002 relay list.
    """

    def __init__(
        self,
        transport: RelayTransport,
        own_relays: Sequence[str],
        *,
        cache_ttl: float = 300.0,
    ) -> None:
        self._transport = transport
        self._own = merge_relays(list(own_relays))
        self._cache_ttl = cache_ttl
        self._cache: dict[str, tuple[float, list[str]]] = {}

    @property
    def own_relays(self) -> list[str]:
        """The merchant's relay set (copy)."""
        return list(self._own)

    async def resolve_for(self, pubkey: str) -> list[str]:
        """Relays advertised by *pubkey*'s newest NIP-65 list.

        Never raises; returns an empty list when nothing usable is found.
        Only non-empty results are cached.
        """
        cached = self._cache.get(pubkey)
        if cached is not None:
            stored_at, relays = cached
            if time.monotonic() - stored_at < self._cache_ttl:
                return list(relays)
            del self._cache[pubkey]

        query = Filter(kinds=(KIND_RELAY_LIST,), authors=(pubkey,), limit=1)
        try:
            events = await self._transport.fetch(self._own, query)
        except OrderServiceError as exc:
            logger.warning("Relay list lookup for %s failed: %s", pubkey[:8], exc)
            return []

        candidates = [e for e in events if e.kind == KIND_RELAY_LIST and e.pubkey == pubkey]
        if not candidates:
            logger.debug("No relay list published by %s", pubkey[:8])
            return []

        newest = max(candidates, key=lambda e: e.created_at)
        urls = [tag[1] for tag in tag_values(newest.tags, "r") if len(tag) > 1]
        relays = merge_relays([u for u in urls if normalize_relay_url(u) is not None])
        if relays:
            self._cache[pubkey] = (time.monotonic(), relays)
        logger.debug("Resolved %d relays for %s", len(relays), pubkey[:8])
        return list(relays)

    async def publish_targets_for(self, pubkey: str) -> list[str]:
        """Own relays plus *pubkey*'s relays, order-preserving, no duplicates."""
        return merge_relays(self._own, await self.resolve_for(pubkey))

    async def discover_own(self, pubkey: str) -> list[str]:
        """Replace the fallback relay set with *pubkey*'s own relay list if found.

        Returns:
            The relay set in effect afterwards.
        """
        relays = await self.resolve_for(pubkey)
        if relays:
            logger.info("Using %d relays from the merchant relay list", len(relays))
            self._own = relays
        else:
            logger.info("No merchant relay list found, using %d fallback relays", len(self._own))
        return self.own_relays
