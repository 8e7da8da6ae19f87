"""Relay transport — websocket connections, publish/fetch, relay selection."""

from __future__ import annotations

from order_service.relay.models import RelayOutcome, RelayResult, merge_relays
from order_service.relay.resolver import RelaySetResolver
from order_service.relay.transport import RelayTransport

__all__ = [
    "RelayOutcome",
    "RelayResult",
    "RelaySetResolver",
    "RelayTransport",
    "merge_relays",
]
