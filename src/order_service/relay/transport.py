"""Relay transport — signed publish fan-out and fetch merge across relays.

One :class:`RelayTransport` is shared by every processor.  It keeps one
:class:`RelayConnection` per relay URL, opened lazily and reused across
operations.  Per-relay failures never escape ``fetch``; ``publish`` only
fails when no relay accepted the event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from order_service.errors.definitions import ErrTransportClosed
from order_service.errors.relay_errors import PublishError, RelayError
from order_service.relay.connection import RelayConnection
from order_service.relay.models import RelayOutcome, RelayResult, classify_ok

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import EventTemplate, SignedEvent
    from order_service.nostr.filters import Filter
    from order_service.nostr.keys import Keys

logger = logging.getLogger(__name__)


class RelayTransport:
    """Publish and fetch Nostr events over a pool of relay connections.

    Usage::

        transport = RelayTransport(timeout=8)
        event = await transport.publish(template, keys, ["wss://nos.lol"])
        events = await transport.fetch(["wss://nos.lol"], Filter(kinds=(16,)))
        await transport.close()
    """

    def __init__(
        self,
        *,
        timeout: float = 8.0,
        connection_factory: Callable[[str], RelayConnection] | None = None,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        """Initialize the transport (no I/O).

        Args:
            timeout: Per-relay deadline in seconds for one operation.
            connection_factory: Builds a connection for a relay URL.
            metrics: Optional metrics sink for per-relay publish outcomes.
        """
        self._timeout = timeout
        self._factory = connection_factory or self._default_connection
        self._metrics = metrics
        self._connections: dict[str, RelayConnection] = {}
        self._closed = False

    @property
    def is_closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def _default_connection(self, url: str) -> RelayConnection:
        return RelayConnection(url, timeout=self._timeout)

    def _connection(self, url: str) -> RelayConnection:
        conn = self._connections.get(url)
        if conn is None:
            conn = self._factory(url)
            self._connections[url] = conn
        return conn

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(
        self,
        template: EventTemplate,
        keys: Keys,
        relays: Sequence[str],
    ) -> SignedEvent:
        """Sign *template* and send it to every relay concurrently.

        Returns:
            The signed event, once at least one relay accepted it.

        Raises:
            RelayError: If the transport is closed.
            PublishError: If no relay accepted the event (including an
                empty relay list).
        """
        if self._closed:
            raise ErrTransportClosed
        event = template.sign(keys)
        if not relays:
            raise PublishError(event.id, [])

        results = await asyncio.gather(*(self._publish_one(url, event) for url in relays))
        for result in results:
            if self._metrics:
                self._metrics.record_relay_publish(result.outcome.value)
            if result.outcome is RelayOutcome.REJECTED:
                logger.info("Relay %s refused event %s: %s", result.relay, event.id[:8], result.message)
            elif result.outcome is RelayOutcome.FAILED:
                logger.warning("Relay %s failed event %s: %s", result.relay, event.id[:8], result.message)

        accepted = sum(1 for r in results if r.accepted)
        if accepted == 0:
            raise PublishError(event.id, list(results))
        logger.debug("Published event %s to %d/%d relays", event.id[:8], accepted, len(results))
        return event

    async def _publish_one(self, url: str, event: SignedEvent) -> RelayResult:
        try:
            ok, message = await self._connection(url).publish(event)
        except RelayError as exc:
            return RelayResult(url, RelayOutcome.FAILED, exc.message)
        return RelayResult(url, classify_ok(ok, message), message)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        relays: Sequence[str],
        query_filter: Filter,
        *,
        timeout: float | None = None,
    ) -> list[SignedEvent]:
        """Query every relay concurrently and merge the results.

        Failing relays are logged and dropped.  Events are returned in relay
        order, de-duplicated by id, with invalid signatures removed.

        Args:
            relays: Relay URLs to query.
            query_filter: The ``REQ`` filter.
            timeout: Overall deadline in seconds.  Relays still running when
                it expires are cancelled and dropped; results that already
                arrived are kept.

        Raises:
            RelayError: If the transport is closed.
        """
        if self._closed:
            raise ErrTransportClosed
        tasks = [asyncio.create_task(self._connection(url).query(query_filter)) for url in relays]
        if not tasks:
            return []
        try:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        seen: set[str] = set()
        merged: list[SignedEvent] = []
        for url, task in zip(relays, tasks, strict=True):
            if task in pending or task.cancelled():
                logger.warning("Fetch from %s timed out", url)
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning("Fetch from %s failed: %s", url, exc)
                continue
            for event in task.result():
                if event.id in seen:
                    continue
                if not event.verify():
                    logger.debug("Dropping event %s with invalid signature from %s", event.id[:8], url)
                    continue
                seen.add(event.id)
                merged.append(event)
        return merged

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close every pooled connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        connections = list(self._connections.values())
        self._connections.clear()
        await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
        logger.debug("Relay transport closed (%d connections)", len(connections))
