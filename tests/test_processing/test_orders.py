"""Tests for the order processor state machine."""

from __future__ import annotations

import asyncio
import logging

import pytest

from order_service.cache.dedup import ProcessedSet
from order_service.errors.lightning_errors import AmountOutOfRange, ResolutionError
from order_service.errors.relay_errors import RelayError
from order_service.metrics.collector import ServiceMetrics
from order_service.nostr.event import KIND_ENCRYPTED_DM
from order_service.nostr.nip04 import decrypt
from order_service.processing.notifier import DirectMessenger
from order_service.processing.orders import OrderProcessor, OrderState
from order_service.relay.resolver import RelaySetResolver
from order_service.relay.transport import RelayTransport

RELAY = "wss://merchant.test"
ORDER_ID = "abcd1234-5678-90ef"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _processor(
    relay_network, merchant_keys, gateway, *, dm_delay: float = 0, metrics=None
) -> OrderProcessor:
    transport = RelayTransport(connection_factory=relay_network)
    resolver = RelaySetResolver(transport, [RELAY])
    messenger = DirectMessenger(merchant_keys, transport, resolver)
    return OrderProcessor(
        merchant_keys,
        gateway,
        resolver,
        transport,
        ProcessedSet(),
        messenger,
        dm_delay=dm_delay,
        metrics=metrics,
    )


def _of_kind(events, kind: int):
    return [e for e in events if e.kind == kind]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestOrderHappyPath:
    async def test_end_to_end(
        self, relay_network, merchant_keys, buyer_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        stub_gateway.invoice = "lnbc50u1pexampleinvoice"
        processor = _processor(relay_network, merchant_keys, stub_gateway)

        state = await processor.handle_event(make_order(ORDER_ID, "5000"))

        assert state is OrderState.COMPLETED
        assert stub_gateway.calls == [(5000, ORDER_ID)]

        (request,) = _of_kind(relay_network.published, 16)
        assert request.pubkey == merchant_keys.public_key
        assert ("p", buyer_keys.public_key) in request.tags
        assert ("type", "2") in request.tags
        assert ("order", ORDER_ID) in request.tags
        assert ("amount", "5000") in request.tags
        assert ("payment", "lightning", "lnbc50u1pexampleinvoice") in request.tags

        (dm,) = _of_kind(relay_network.published, KIND_ENCRYPTED_DM)
        assert dm.tags == (("p", buyer_keys.public_key),)
        text = decrypt(buyer_keys, merchant_keys.public_key, dm.content)
        assert "5,000 sats" in text
        assert "lnbc50u1pexampleinvoice" in text
        assert "Order #abcd1234" in text

    async def test_payment_request_precedes_dm(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway, dm_delay=0.01)
        await processor.handle_event(make_order())
        assert [e.kind for e in relay_network.published] == [16, KIND_ENCRYPTED_DM]

    async def test_invoice_is_recorded(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        await processor.handle_event(make_order())

        issued = processor.issued_invoices[ORDER_ID]
        assert issued.invoice == stub_gateway.invoice
        assert issued.amount_sats == 5000
        assert issued.published is True
        assert issued.request_event_id == _of_kind(relay_network.published, 16)[0].id
        assert processor.states == {ORDER_ID: OrderState.COMPLETED}
        assert processor.knows_order(ORDER_ID)


# ---------------------------------------------------------------------------
# Idempotence and filtering
# ---------------------------------------------------------------------------


class TestOrderIdempotence:
    async def test_same_order_processed_once(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        event = make_order()

        results = [await processor.handle_event(event) for _ in range(5)]

        assert results == [OrderState.COMPLETED, None, None, None, None]
        assert len(stub_gateway.calls) == 1
        assert len(_of_kind(relay_network.published, 16)) == 1

    async def test_concurrent_duplicates_processed_once(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        # Different events, same order id
        events = [make_order(created_at=1_700_000_000 + i) for i in range(4)]

        results = await asyncio.gather(*(processor.handle_event(e) for e in events))

        assert results.count(OrderState.COMPLETED) == 1
        assert len(stub_gateway.calls) == 1
        assert len(_of_kind(relay_network.published, 16)) == 1

    async def test_duplicate_counted_in_metrics(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        metrics = ServiceMetrics()
        processor = _processor(relay_network, merchant_keys, stub_gateway, metrics=metrics)
        event = make_order()
        await processor.handle_event(event)
        await processor.handle_event(event)

        sample = metrics.registry.get_sample_value
        assert sample("ordersvc_orders_total", {"result": "completed"}) == 1.0
        assert sample("ordersvc_orders_total", {"result": "duplicate"}) == 1.0
        assert sample("ordersvc_invoice_request_histogram_count") == 1.0

    async def test_not_addressed_to_merchant(
        self, relay_network, merchant_keys, buyer_keys, stub_gateway, make_event
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        event = make_event(
            buyer_keys,
            16,
            [["p", "f" * 64], ["type", "1"], ["order", ORDER_ID], ["amount", "5000"]],
        )
        assert await processor.handle_event(event) is None
        assert stub_gateway.calls == []
        assert not processor.knows_order(ORDER_ID)

    @pytest.mark.parametrize("missing", ["order", "amount"])
    async def test_malformed_order_is_discarded(
        self, relay_network, merchant_keys, buyer_keys, stub_gateway, make_event, missing
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        tags = [
            ["p", merchant_keys.public_key],
            ["type", "1"],
            ["order", ORDER_ID],
            ["amount", "5000"],
        ]
        tags = [t for t in tags if t[0] != missing]
        assert await processor.handle_event(make_event(buyer_keys, 16, tags)) is None
        assert stub_gateway.calls == []
        assert relay_network.published == []

    async def test_payment_request_echo_is_ignored(
        self, relay_network, merchant_keys, stub_gateway, make_event
    ) -> None:
        relay_network.add(RELAY)
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        echo = make_event(
            merchant_keys,
            16,
            [["p", merchant_keys.public_key], ["type", "2"], ["order", ORDER_ID], ["amount", "1"]],
        )
        assert await processor.handle_event(echo) is None
        assert stub_gateway.calls == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestOrderFailures:
    @pytest.mark.parametrize(
        "error",
        [ResolutionError("lnurl down"), AmountOutOfRange(1, 10_000, 1_000_000)],
    )
    async def test_gateway_failure_fails_order(
        self, relay_network, merchant_keys, stub_gateway, make_order, error
    ) -> None:
        relay_network.add(RELAY)
        stub_gateway.error = error
        processor = _processor(relay_network, merchant_keys, stub_gateway)

        assert await processor.handle_event(make_order()) is OrderState.FAILED
        assert relay_network.published == []
        assert processor.issued_invoices == {}

    async def test_failed_order_is_not_retried(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        stub_gateway.error = ResolutionError("lnurl down")
        processor = _processor(relay_network, merchant_keys, stub_gateway)

        await processor.handle_event(make_order())
        stub_gateway.error = None
        assert await processor.handle_event(make_order(created_at=1_800_000_000)) is None

        assert len(stub_gateway.calls) == 1
        assert processor.states[ORDER_ID] is OrderState.FAILED

    async def test_publish_failure_fails_order_and_keeps_invoice(
        self, relay_network, merchant_keys, stub_gateway, make_order, caplog
    ) -> None:
        relay_network.add(RELAY, ok=RelayError("down"))
        processor = _processor(relay_network, merchant_keys, stub_gateway)

        with caplog.at_level(logging.ERROR, logger="order_service.processing.orders"):
            state = await processor.handle_event(make_order())

        assert state is OrderState.FAILED
        issued = processor.issued_invoices[ORDER_ID]
        assert issued.published is False
        assert stub_gateway.invoice in caplog.text
        assert relay_network.published == []

    async def test_dm_failure_keeps_order_completed(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        def ok(event):
            return RelayError("dm refused") if event.kind == KIND_ENCRYPTED_DM else (True, "")

        relay_network.add(RELAY, ok=ok)
        processor = _processor(relay_network, merchant_keys, stub_gateway)

        assert await processor.handle_event(make_order()) is OrderState.COMPLETED
        assert len(_of_kind(relay_network.published, 16)) == 1
        assert _of_kind(relay_network.published, KIND_ENCRYPTED_DM) == []

    async def test_unexpected_error_never_escapes(
        self, relay_network, merchant_keys, stub_gateway, make_order
    ) -> None:
        relay_network.add(RELAY)
        stub_gateway.error = RuntimeError("bug")
        processor = _processor(relay_network, merchant_keys, stub_gateway)
        assert await processor.handle_event(make_order()) is OrderState.FAILED
