"""Relay transport errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from order_service.errors.service_errors import OrderServiceError

if TYPE_CHECKING:
    from order_service.relay.models import RelayResult


class RelayError(OrderServiceError):
    """Error talking to one relay, or to the relay pool as a whole."""

    def __init__(self, message: str, *, code: str = "relay-error") -> None:
        super().__init__(message, code=code)


class PublishError(RelayError):
    """No target relay accepted an event.

    Attributes:
        event_id: Id of the signed event that could not be delivered.
        results: Per-relay outcomes of the publish attempt.
    """

    def __init__(self, event_id: str, results: list[RelayResult] | None = None) -> None:
        results = results or []
        super().__init__(
            f"Failed to publish event {event_id[:8]} to any of {len(results)} relays",
            code="publish-failed",
        )
        self.event_id = event_id
        self.results = results
