"""Shared test fixtures for the order service test suite."""

from __future__ import annotations

from typing import Any

import pytest

from order_service.errors.relay_errors import RelayError
from order_service.nostr.event import EventTemplate, SignedEvent
from order_service.nostr.keys import Keys

MERCHANT_SECRET = "0000000000000000000000000000000000000000000000000000000000000003"
BUYER_SECRET = "0000000000000000000000000000000000000000000000000000000000000007"


# ---------------------------------------------------------------------------
# Fake relay network
# ---------------------------------------------------------------------------


class FakeRelayConnection:
    """In-memory stand-in for ``RelayConnection``.

    ``ok`` is the ``(accepted, message)`` answer to every publish, an
    exception to raise, or a callable mapping the event to either.
    ``events`` is returned by every query, or an exception to raise.
    """

    def __init__(self, url: str, *, ok: Any = (True, ""), events: Any = None) -> None:
        self.url = url
        self.ok = ok
        self.events = events if events is not None else []
        self.published: list[SignedEvent] = []
        self.queries: list[Any] = []
        self.closed = False

    async def publish(self, event: SignedEvent) -> tuple[bool, str]:
        ok = self.ok(event) if callable(self.ok) else self.ok
        if isinstance(ok, Exception):
            raise ok
        self.published.append(event)
        return ok

    async def query(self, query_filter: Any) -> list[SignedEvent]:
        self.queries.append(query_filter)
        if isinstance(self.events, Exception):
            raise self.events
        if callable(self.events):
            return list(self.events(query_filter))
        return list(self.events)

    async def close(self) -> None:
        self.closed = True


class FakeRelayNetwork:
    """Connection factory handing out one ``FakeRelayConnection`` per URL."""

    def __init__(self) -> None:
        self.relays: dict[str, FakeRelayConnection] = {}

    def add(self, url: str, **kwargs: Any) -> FakeRelayConnection:
        conn = FakeRelayConnection(url, **kwargs)
        self.relays[url] = conn
        return conn

    def __call__(self, url: str) -> FakeRelayConnection:
        if url not in self.relays:
            self.add(url, ok=RelayError(f"connect to {url} failed"), events=RelayError("down"))
        return self.relays[url]

    @property
    def published(self) -> list[SignedEvent]:
        return [event for conn in self.relays.values() for event in conn.published]


# ---------------------------------------------------------------------------
# Stub invoice gateway
# ---------------------------------------------------------------------------


class StubGateway:
    """Records ``generate_invoice`` calls and returns a fixed invoice."""

    def __init__(self, invoice: str = "lnbc50u1ptestinvoice", *, error: Exception | None = None):
        self.invoice = invoice
        self.error = error
        self.calls: list[tuple[int, str]] = []
        self.valid = True
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def validate(self, address: str | None = None) -> bool:
        return self.valid

    async def generate_invoice(self, amount_sats: int, order_id: str) -> str:
        self.calls.append((amount_sats, order_id))
        if self.error is not None:
            raise self.error
        return self.invoice


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def merchant_keys() -> Keys:
    return Keys.from_hex(MERCHANT_SECRET)


@pytest.fixture
def buyer_keys() -> Keys:
    return Keys.from_hex(BUYER_SECRET)


@pytest.fixture
def relay_network() -> FakeRelayNetwork:
    return FakeRelayNetwork()


@pytest.fixture
def stub_gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def make_event():
    """Build and sign an event: ``make_event(keys, kind, tags, content="", created_at=None)``."""

    def _make(
        keys: Keys,
        kind: int,
        tags: list[list[str]] | tuple = (),
        content: str = "",
        created_at: int | None = None,
    ) -> SignedEvent:
        template_args: dict[str, Any] = {
            "kind": kind,
            "tags": tuple(tuple(t) for t in tags),
            "content": content,
        }
        if created_at is not None:
            template_args["created_at"] = created_at
        return EventTemplate(**template_args).sign(keys)

    return _make


@pytest.fixture
def make_order(make_event, buyer_keys, merchant_keys):
    """Build a signed kind-16 type-1 order from the buyer to the merchant."""

    def _make(
        order_id: str = "abcd1234-5678-90ef",
        amount: str = "5000",
        *,
        extra_tags: list[list[str]] | None = None,
        created_at: int | None = None,
    ) -> SignedEvent:
        tags = [
            ["p", merchant_keys.public_key],
            ["type", "1"],
            ["order", order_id],
            ["amount", amount],
            ["item", f"30402:{merchant_keys.public_key}:tshirt", "2"],
        ]
        tags.extend(extra_tags or [])
        return make_event(buyer_keys, 16, tags, "please ship fast", created_at)

    return _make


@pytest.fixture
def make_receipt(make_event, buyer_keys, merchant_keys):
    """Build a signed kind-17 payment receipt from the buyer to the merchant."""

    def _make(order_id: str = "abcd1234-5678-90ef", created_at: int | None = None) -> SignedEvent:
        tags = [
            ["p", merchant_keys.public_key],
            ["order", order_id],
            ["payment", "lightning", "lnbc50u1ptestinvoice", "preimage00"],
            ["amount", "5000"],
        ]
        return make_event(buyer_keys, 17, tags, "", created_at)

    return _make
