"""A single pooled websocket connection to one relay (NIP-01 client side).

Each connection is opened lazily, used by one operation at a time (a lock
serializes ``publish`` / ``query`` so replies are never interleaved), and
discarded on any error so the next operation reconnects.  The deadline of an
operation covers the wait for the lock, so a hung relay fails every queued
operation after one ``timeout`` instead of running them back to back.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from order_service.errors.relay_errors import RelayError
from order_service.nostr.event import SignedEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from order_service.nostr.filters import Filter

logger = logging.getLogger(__name__)

_MAX_MESSAGE_SIZE = 4 * 1024 * 1024


class WebSocketLike(Protocol):
    """The subset of a websocket client connection the relay client uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


async def _websocket_connect(url: str, timeout: float) -> WebSocketLike:
    return await connect(url, open_timeout=timeout, close_timeout=2, max_size=_MAX_MESSAGE_SIZE)


class RelayConnection:
    """Request/response client for one relay URL.

    Usage::

        conn = RelayConnection("wss://relay.damus.io", timeout=8)
        accepted, message = await conn.publish(event)
        events = await conn.query(Filter(kinds=(16,)))
        await conn.close()
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 8.0,
        connector: Callable[[str, float], Awaitable[WebSocketLike]] | None = None,
    ) -> None:
        """Initialize the connection (no I/O).

        Args:
            url: Relay websocket URL.
            timeout: Deadline in seconds for connect + one full operation.
            connector: Coroutine factory opening the websocket.
        """
        self.url = url
        self._timeout = timeout
        self._connector = connector or _websocket_connect
        self._ws: WebSocketLike | None = None
        self._lock = asyncio.Lock()
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def is_open(self) -> bool:
        """Whether a websocket is currently held."""
        return self._ws is not None

    async def close(self) -> None:
        """Close the websocket if open. Idempotent."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)
        if self._closing:
            await asyncio.gather(*self._closing)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def publish(self, event: SignedEvent) -> tuple[bool, str]:
        """Send an event and wait for the relay's ``OK``.

        Returns:
            ``(accepted, message)`` as reported by the relay.

        Raises:
            RelayError: On connection failure, protocol error or timeout.
        """
        return await self._run("publish", partial(self._publish, event))

    async def query(self, query_filter: Filter) -> list[SignedEvent]:
        """Run one ``REQ`` and collect events until ``EOSE``.

        Raises:
            RelayError: On connection failure, ``CLOSED``, or timeout.
        """
        return await self._run("query", partial(self._query, query_filter))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, name: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(self._exclusive(operation), timeout=self._timeout)
        except RelayError:
            raise
        except (OSError, TimeoutError, WebSocketException, ValueError) as exc:
            msg = f"{name} on {self.url} failed: {str(exc) or type(exc).__name__}"
            raise RelayError(msg) from exc

    async def _exclusive(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run *operation* holding the lock; drop the socket if it fails."""
        async with self._lock:
            try:
                return await operation()
            except asyncio.CancelledError:
                # deadline hit mid-operation: the socket state is unknown
                self._abandon()
                raise
            except Exception:
                await self.close()
                raise

    def _abandon(self) -> None:
        """Forget the socket now and close it in the background."""
        ws, self._ws = self._ws, None
        if ws is not None:
            task = asyncio.create_task(self._close_socket(ws))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _close_socket(self, ws: WebSocketLike) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Error closing %s: %s", self.url, exc)

    async def _ensure_open(self) -> WebSocketLike:
        if self._ws is None:
            self._ws = await self._connector(self.url, self._timeout)
        return self._ws

    async def _publish(self, event: SignedEvent) -> tuple[bool, str]:
        ws = await self._ensure_open()
        await ws.send(json.dumps(["EVENT", event.to_dict()], ensure_ascii=False))
        while True:
            message = self._decode(await ws.recv())
            if not message:
                continue
            if message[0] == "OK" and len(message) >= 3 and message[1] == event.id:
                return bool(message[2]), str(message[3]) if len(message) > 3 else ""
            if message[0] == "NOTICE":
                logger.debug("NOTICE from %s: %s", self.url, message[1:])

    async def _query(self, query_filter: Filter) -> list[SignedEvent]:
        ws = await self._ensure_open()
        sub_id = uuid.uuid4().hex[:16]
        await ws.send(json.dumps(["REQ", sub_id, query_filter.to_dict()]))
        events: list[SignedEvent] = []
        while True:
            message = self._decode(await ws.recv())
            if not message or len(message) < 2 or message[1] != sub_id:
                if message and message[0] == "NOTICE":
                    logger.debug("NOTICE from %s: %s", self.url, message[1:])
                continue
            kind = message[0]
            if kind == "EVENT" and len(message) >= 3 and isinstance(message[2], dict):
                try:
                    events.append(SignedEvent.from_dict(message[2]))
                except ValueError:
                    logger.debug("Dropping malformed event from %s", self.url)
            elif kind == "EOSE":
                break
            elif kind == "CLOSED":
                reason = message[2] if len(message) > 2 else ""
                msg = f"{self.url} closed subscription: {reason}"
                raise RelayError(msg)
        await ws.send(json.dumps(["CLOSE", sub_id]))
        return events

    @staticmethod
    def _decode(raw: str | bytes) -> list[Any] | None:
        """Parse a relay frame; anything that is not a non-empty JSON array is ignored."""
        try:
            message = json.loads(raw)
        except ValueError:
            return None
        if isinstance(message, list) and message and isinstance(message[0], str):
            return message
        return None
