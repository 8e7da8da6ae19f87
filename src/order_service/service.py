"""OrderService — composition root owning every component and its lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from order_service.cache.dedup import ProcessedSet
from order_service.errors.definitions import ErrInvalidLightningAddress
from order_service.lightning.gateway import InvoiceGateway
from order_service.nostr.event import now
from order_service.nostr.filters import Filter
from order_service.orders.codec import ORDER_KIND, PAYMENT_RECEIPT_KIND
from order_service.processing.notifier import DirectMessenger
from order_service.processing.orders import OrderProcessor
from order_service.processing.payments import PaymentProcessor
from order_service.relay.resolver import RelaySetResolver
from order_service.relay.transport import RelayTransport
from order_service.subscriptions.poller import SubscriptionPoller

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from order_service.config.settings import AppConfig
    from order_service.metrics.collector import ServiceMetrics
    from order_service.nostr.event import SignedEvent
    from order_service.nostr.keys import Keys
    from order_service.subscriptions.poller import Subscription

logger = logging.getLogger(__name__)


class OrderService:
    """Wires the pollers, processors, gateway and transport together.

    Usage::

        service = OrderService(config, keys)
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: AppConfig,
        keys: Keys,
        *,
        gateway: InvoiceGateway | None = None,
        transport: RelayTransport | None = None,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        """Build every component (no I/O).

        Args:
            config: Application configuration.
            keys: Merchant signing identity.
            gateway: Invoice gateway override (tests).
            transport: Relay transport override (tests).
            metrics: Optional metrics sink shared by all components.
        """
        self._config = config
        self._keys = keys
        self._metrics = metrics
        self._gateway = gateway or InvoiceGateway(
            config.lightning_address, timeout=config.lightning.timeout
        )
        self._transport = transport or RelayTransport(timeout=config.relay.timeout, metrics=metrics)
        self._resolver = RelaySetResolver(
            self._transport,
            config.fallback_relays,
            cache_ttl=config.relay.relay_list_cache_ttl,
        )
        self._processed = ProcessedSet(
            max_size=config.dedup.max_size,
            retention_seconds=config.dedup.retention_seconds,
        )
        messenger = DirectMessenger(keys, self._transport, self._resolver, metrics=metrics)
        self._orders = OrderProcessor(
            keys,
            self._gateway,
            self._resolver,
            self._transport,
            self._processed,
            messenger,
            dm_delay=config.processing.dm_delay,
            metrics=metrics,
        )
        self._payments = PaymentProcessor(
            keys,
            self._processed,
            messenger,
            known_order=self._orders.knows_order,
            transport=self._transport,
            resolver=self._resolver,
            publish_status_updates=config.processing.publish_status_updates,
            metrics=metrics,
        )
        self._subscriptions: list[Subscription] = []
        self._inflight: set[asyncio.Task[object]] = set()
        self._running = False

    # -- Accessors --

    @property
    def is_running(self) -> bool:
        """Whether the service has been started and not yet stopped."""
        return self._running

    @property
    def keys(self) -> Keys:
        """The merchant identity."""
        return self._keys

    @property
    def resolver(self) -> RelaySetResolver:
        """The relay set resolver."""
        return self._resolver

    @property
    def order_processor(self) -> OrderProcessor:
        """The order state machine."""
        return self._orders

    @property
    def payment_processor(self) -> PaymentProcessor:
        """The payment receipt state machine."""
        return self._payments

    @property
    def subscriptions(self) -> list[Subscription]:
        """Active subscriptions (copy)."""
        return list(self._subscriptions)

    # -- Lifecycle --

    async def start(self) -> None:
        """Validate the Lightning Address, pick relays and start polling.

        Raises:
            ConfigError: If the Lightning Address fails validation.
            RuntimeError: If already started.
        """
        if self._running:
            msg = "OrderService already started"
            raise RuntimeError(msg)

        await self._gateway.connect()
        if not await self._gateway.validate():
            await self._gateway.close()
            raise ErrInvalidLightningAddress

        pubkey = self._keys.public_key
        relays = await self._resolver.discover_own(pubkey)
        since = now()
        streams = (
            ("orders", ORDER_KIND, self._orders.handle_event),
            ("receipts", PAYMENT_RECEIPT_KIND, self._payments.handle_event),
        )
        for name, kind, handler in streams:
            poller = SubscriptionPoller(
                self._transport,
                relays,
                Filter(kinds=(kind,), p_tags=(pubkey,), since=since),
                self._dispatcher(name, handler),
                interval=self._config.relay.poll_interval,
                jitter=self._config.relay.poll_jitter,
                tick_timeout=self._config.relay.tick_timeout,
                name=name,
                metrics=self._metrics,
            )
            self._subscriptions.append(poller.start())

        self._running = True
        logger.info("Order service started for %s on %d relays", self._keys.npub[:16], len(relays))

    async def stop(self) -> None:
        """Stop polling, drain in-flight handlers, then release connections.

        Idempotent.
        """
        if not self._running:
            return
        self._running = False

        for sub in self._subscriptions:
            sub.unsubscribe()
        await asyncio.gather(*(sub.wait_closed() for sub in self._subscriptions))
        self._subscriptions.clear()

        if self._inflight:
            logger.info("Waiting for %d in-flight handlers", len(self._inflight))
            _, pending = await asyncio.wait(
                set(self._inflight), timeout=self._config.processing.shutdown_grace
            )
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled %d handlers after the shutdown grace period", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        await self._transport.close()
        await self._gateway.close()
        logger.info("Order service stopped")

    # -- Internals --

    def _dispatcher(
        self, stream: str, handler: Callable[[SignedEvent], Coroutine[Any, Any, object]]
    ) -> Callable[[SignedEvent], None]:
        """Wrap *handler* so each event runs in its own task."""

        def dispatch(event: SignedEvent) -> None:
            task = asyncio.create_task(handler(event), name=f"{stream}-{event.id[:8]}")
            self._inflight.add(task)
            task.add_done_callback(self._task_done)

        return dispatch

    def _task_done(self, task: asyncio.Task[object]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Handler %s crashed: %s", task.get_name(), exc, exc_info=exc)
