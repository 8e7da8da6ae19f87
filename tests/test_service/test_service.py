"""Tests for the OrderService composition root."""

from __future__ import annotations

import asyncio

import pytest

from order_service.config.settings import AppConfig, ProcessingConfig, RelayConfig
from order_service.errors.service_errors import ConfigError
from order_service.metrics.collector import ServiceMetrics
from order_service.nostr.event import KIND_ENCRYPTED_DM
from order_service.processing.orders import OrderState
from order_service.relay.transport import RelayTransport
from order_service.service import OrderService

RELAY = "wss://merchant.test"
ORDER_ID = "abcd1234-5678-90ef"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(merchant_keys, *, shutdown_grace: float = 1.0) -> AppConfig:
    return AppConfig(
        merchant_nsec=merchant_keys.nsec,
        lightning_address="shop@example.com",
        fallback_relays=[RELAY],
        relay=RelayConfig(poll_interval=0.01, poll_jitter=0, tick_timeout=1),
        processing=ProcessingConfig(dm_delay=0, shutdown_grace=shutdown_grace),
    )


def _serve(relay_network, *, orders=(), receipts=()):
    """Add a relay answering order / receipt queries with fixed events."""

    def answer(query_filter):
        if query_filter.kinds == (16,):
            return orders
        if query_filter.kinds == (17,):
            return receipts
        return []

    return relay_network.add(RELAY, events=answer)


def _service(config, merchant_keys, gateway, relay_network, **kwargs) -> OrderService:
    transport = RelayTransport(connection_factory=relay_network)
    return OrderService(config, merchant_keys, gateway=gateway, transport=transport, **kwargs)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


class BlockingGateway:
    """Gateway whose invoice requests never complete."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.closed = False

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True

    async def validate(self, address: str | None = None) -> bool:
        return True

    async def generate_invoice(self, amount_sats: int, order_id: str) -> str:
        self.started.set()
        await asyncio.Event().wait()
        return ""


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


class TestStart:
    async def test_invalid_lightning_address(
        self, relay_network, merchant_keys, stub_gateway
    ) -> None:
        _serve(relay_network)
        stub_gateway.valid = False
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)

        with pytest.raises(ConfigError):
            await service.start()

        assert not service.is_running
        assert not stub_gateway.connected
        assert service.subscriptions == []

    async def test_starts_two_subscriptions(
        self, relay_network, merchant_keys, stub_gateway
    ) -> None:
        _serve(relay_network)
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)

        await service.start()
        try:
            assert service.is_running
            assert len(service.subscriptions) == 2
            assert all(sub.is_active for sub in service.subscriptions)
            assert service.resolver.own_relays == [RELAY]
        finally:
            await service.stop()

    async def test_queries_are_addressed_to_merchant(
        self, relay_network, merchant_keys, stub_gateway
    ) -> None:
        relay = _serve(relay_network)
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)

        await service.start()
        await _wait_for(lambda: {16, 17} <= {k for q in relay.queries for k in q.kinds})
        await service.stop()

        polls = [q for q in relay.queries if q.kinds in ((16,), (17,))]
        assert all(q.p_tags == (merchant_keys.public_key,) for q in polls)
        assert all(q.since is not None for q in polls)

    async def test_double_start_rejected(self, relay_network, merchant_keys, stub_gateway) -> None:
        _serve(relay_network)
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)
        await service.start()
        try:
            with pytest.raises(RuntimeError):
                await service.start()
        finally:
            await service.stop()


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestProcessing:
    async def test_polled_order_is_invoiced(
        self, relay_network, merchant_keys, buyer_keys, stub_gateway, make_order
    ) -> None:
        relay = _serve(relay_network, orders=[make_order(ORDER_ID, "5000")])
        metrics = ServiceMetrics()
        service = _service(
            _config(merchant_keys),
            merchant_keys,
            stub_gateway,
            relay_network,
            metrics=metrics,
        )

        await service.start()
        processor = service.order_processor
        await _wait_for(lambda: processor.states.get(ORDER_ID) is OrderState.COMPLETED)
        await service.stop()

        assert stub_gateway.calls == [(5000, ORDER_ID)]
        kinds = sorted(e.kind for e in relay.published)
        assert kinds == [KIND_ENCRYPTED_DM, 16]
        assert all(e.pubkey == merchant_keys.public_key for e in relay.published)
        assert metrics.registry.get_sample_value(
            "ordersvc_orders_total", {"result": "completed"}
        ) == 1.0

    async def test_repeated_polls_process_once(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        _serve(relay_network, orders=[make_order(ORDER_ID, "5000")])
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)

        await service.start()
        relay = relay_network.relays[RELAY]
        await _wait_for(lambda: len([q for q in relay.queries if q.kinds == (16,)]) >= 3)
        await service.stop()

        assert stub_gateway.calls == [(5000, ORDER_ID)]

    async def test_polled_receipt_is_acknowledged(
        self, relay_network, merchant_keys, buyer_keys, stub_gateway, make_receipt
    ) -> None:
        relay = _serve(relay_network, receipts=[make_receipt(ORDER_ID)])
        metrics = ServiceMetrics()
        service = _service(
            _config(merchant_keys),
            merchant_keys,
            stub_gateway,
            relay_network,
            metrics=metrics,
        )

        await service.start()
        await _wait_for(
            lambda: metrics.registry.get_sample_value(
                "ordersvc_receipts_total", {"result": "acknowledged"}
            )
            == 1.0
        )
        await _wait_for(lambda: any(e.kind == KIND_ENCRYPTED_DM for e in relay.published))
        await service.stop()

        (dm,) = [e for e in relay.published if e.kind == KIND_ENCRYPTED_DM]
        assert ("p", buyer_keys.public_key) in dm.tags
        assert stub_gateway.calls == []


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_releases_resources(
        self, relay_network, merchant_keys, stub_gateway
    ) -> None:
        relay = _serve(relay_network)
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)
        await service.start()
        subs = service.subscriptions

        await service.stop()

        assert not service.is_running
        assert service.subscriptions == []
        assert not any(sub.is_active for sub in subs)
        assert relay.closed
        assert not stub_gateway.connected

    async def test_stop_is_idempotent(self, relay_network, merchant_keys, stub_gateway) -> None:
        _serve(relay_network)
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)
        await service.start()

        await service.stop()
        await service.stop()

        assert not service.is_running

    async def test_stop_before_start_is_noop(
        self, relay_network, merchant_keys, stub_gateway
    ) -> None:
        service = _service(_config(merchant_keys), merchant_keys, stub_gateway, relay_network)
        await service.stop()
        assert not service.is_running

    async def test_stuck_handlers_cancelled_after_grace(
        self, relay_network, merchant_keys, make_order
    ) -> None:
        _serve(relay_network, orders=[make_order(ORDER_ID, "5000")])
        gateway = BlockingGateway()
        service = _service(
            _config(merchant_keys, shutdown_grace=0.05), merchant_keys, gateway, relay_network
        )

        await service.start()
        await asyncio.wait_for(gateway.started.wait(), timeout=2)
        await asyncio.wait_for(service.stop(), timeout=2)

        assert gateway.closed
        assert service.order_processor.states[ORDER_ID] is OrderState.PROCESSING
