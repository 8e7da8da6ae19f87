"""Subscription poller — periodic relay queries with a monotone watermark.

A :class:`SubscriptionPoller` owns one filter and one background task.
Every tick fetches events newer than (or equal to) the watermark from all
relays, hands unseen events to the callback in batch order, then advances
the watermark to the newest ``created_at`` it saw.  Events that arrive late
below the watermark are caught by the id dedup set, not by timestamp.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from typing import TYPE_CHECKING

from order_service.cache.dedup import DedupSet
from order_service.errors.service_errors import OrderServiceError
from order_service.nostr.event import now

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import SignedEvent
    from order_service.nostr.filters import Filter
    from order_service.relay.transport import RelayTransport

    EventCallback = Callable[[SignedEvent], Awaitable[None] | None]

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by :meth:`SubscriptionPoller.start`."""

    def __init__(self, poller: SubscriptionPoller, task: asyncio.Task[None]) -> None:
        self._poller = poller
        self._task = task

    @property
    def is_active(self) -> bool:
        """Whether the poll loop is still scheduling ticks."""
        return not self._poller.is_stopped and not self._task.done()

    @property
    def watermark(self) -> int:
        """The poller's current watermark."""
        return self._poller.watermark

    def unsubscribe(self) -> None:
        """Stop scheduling ticks. An in-flight tick runs to completion."""
        self._poller.stop()

    async def wait_closed(self) -> None:
        """Wait until the poll loop has exited."""
        await asyncio.gather(self._task, return_exceptions=True)


class SubscriptionPoller:
    """Polls relays for one filter and feeds new events to a callback.

    Usage::

        poller = SubscriptionPoller(transport, relays, Filter(kinds=(16,)), on_event)
        sub = poller.start()
        ...
        sub.unsubscribe()
        await sub.wait_closed()
    """

    def __init__(
        self,
        transport: RelayTransport,
        relays: Sequence[str],
        query_filter: Filter,
        callback: EventCallback,
        *,
        interval: float = 5.0,
        jitter: float = 1.0,
        tick_timeout: float = 20.0,
        name: str = "",
        seen: DedupSet | None = None,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        """Initialize the poller (no I/O).

        Args:
            transport: Shared relay transport.
            relays: Relays to query on every tick.
            query_filter: Base filter; ``since`` seeds the watermark.
            callback: Called once per unseen event, sync or async.
            interval: Base seconds between ticks.
            jitter: Upper bound of random seconds added to each interval.
            tick_timeout: Deadline in seconds for one tick's fetch; relays
                that miss it are skipped for that tick.
            name: Stream label used in logs and metrics.
            seen: Dedup set of event ids; a fresh one by default.
            metrics: Optional metrics sink.
        """
        self._transport = transport
        self._relays = list(relays)
        self._filter = query_filter
        self._callback = callback
        self._interval = interval
        self._jitter = jitter
        self._tick_timeout = tick_timeout
        self._name = name or "subscription"
        self._seen = seen if seen is not None else DedupSet()
        self._metrics = metrics
        self._watermark = query_filter.since if query_filter.since is not None else now()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def watermark(self) -> int:
        """Lower bound used for the next fetch. Never decreases."""
        return self._watermark

    @property
    def is_stopped(self) -> bool:
        """Whether :meth:`stop` has been called."""
        return self._stop.is_set()

    def start(self) -> Subscription:
        """Start the background poll loop."""
        if self._task is not None:
            msg = f"poller {self._name} already started"
            raise RuntimeError(msg)
        self._task = asyncio.create_task(self._run_loop(), name=f"poll-{self._name}")
        logger.info(
            "Subscribed %s on %d relays (since %d)", self._name, len(self._relays), self._watermark
        )
        return Subscription(self, self._task)

    def stop(self) -> None:
        """Request the loop to exit after the current tick. Single-shot."""
        if not self._stop.is_set():
            self._stop.set()
            logger.info("Unsubscribed %s", self._name)

    async def tick(self) -> int:
        """Run one poll cycle.

        Returns:
            The number of new events delivered to the callback.  A failed
            fetch delivers nothing and leaves the watermark unchanged.
        """
        query = self._filter.with_since(self._watermark)
        try:
            if self._metrics:
                with self._metrics.track_poll_tick(self._name):
                    events = await self._fetch(query)
            else:
                events = await self._fetch(query)
        except OrderServiceError as exc:
            logger.warning("Poll tick for %s failed: %s", self._name, exc)
            return 0

        delivered = 0
        newest = self._watermark
        for event in events:
            newest = max(newest, event.created_at)
            if not self._seen.add_if_absent(event.id):
                continue
            delivered += 1
            try:
                result = self._callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Callback for %s failed on event %s", self._name, event.id[:8])

        if newest > self._watermark:
            self._watermark = newest
            if self._metrics:
                self._metrics.set_watermark(self._name, newest)
        if delivered:
            logger.debug("%s: %d new events, watermark %d", self._name, delivered, self._watermark)
        return delivered

    async def _fetch(self, query: Filter) -> list[SignedEvent]:
        # relays that miss the deadline are dropped; the others still count
        return await self._transport.fetch(self._relays, query, timeout=self._tick_timeout)

    async def _run_loop(self) -> None:
        """Tick, then sleep ``interval + jitter``, until stopped."""
        while not self._stop.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Poll loop %s failed", self._name)
            delay = self._interval + random.uniform(0, self._jitter)  # noqa: S311
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except TimeoutError:
                continue
