"""Invoice gateway — LNURL-pay client for the merchant's Lightning Address.

Provides an async HTTP client for the two LNURL-pay round trips:
- Resolution (``/.well-known/lnurlp/<name>``) to a callback + amount bounds
- Invoice request (``callback?amount=<msat>&comment=<text>``)

Amount bounds are enforced locally before the callback is ever called.
"""

from __future__ import annotations

import logging

import httpx

from order_service.errors.lightning_errors import (
    AmountOutOfRange,
    InvoiceRequestError,
    LightningError,
    ResolutionError,
)
from order_service.lightning.models import InvoiceResponse, LightningAddress, PayParams

logger = logging.getLogger(__name__)

_MSATS_PER_SAT = 1000
_COMMENT_LENGTH = 8


class InvoiceGateway:
    """Async LNURL-pay client bound to one Lightning Address.

    Usage::

        gateway = InvoiceGateway("shop@getalby.com")
        await gateway.connect()
        try:
            invoice = await gateway.generate_invoice(5000, order_id)
        finally:
            await gateway.close()
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            address: The merchant's Lightning Address.
            timeout: Deadline in seconds for every HTTP request.
            transport: Optional httpx transport (tests inject a mock here).
        """
        self._address = address
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def address(self) -> str:
        """The configured Lightning Address."""
        return self._address

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": "nostr-order-service/0.1"},
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, address: str | None = None) -> PayParams:
        """Resolve a Lightning Address to its LNURL-pay parameters.

        Args:
            address: Address to resolve; defaults to the configured one.

        Raises:
            ResolutionError: On network failure, non-success status, an
                explicit error status, or a missing callback.
        """
        parsed = LightningAddress.from_string(address or self._address)
        url = parsed.well_known_url
        logger.debug("Resolving %s -> %s", parsed, url)

        client = await self._ensure_connected()
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            msg = f"Failed to resolve Lightning Address {parsed}: {exc}"
            raise ResolutionError(msg) from exc

        if not response.is_success:
            msg = f"Failed to resolve Lightning Address: {response.status_code}"
            raise ResolutionError(msg)

        try:
            return PayParams.from_dict(response.json())
        except (ValueError, TypeError, AttributeError) as exc:
            msg = f"Invalid LNURL response from {parsed.domain}: {exc}"
            raise ResolutionError(msg) from exc

    async def validate(self, address: str | None = None) -> bool:
        """Check that a Lightning Address resolves. Never raises."""
        try:
            await self.resolve(address)
        except LightningError as exc:
            logger.error("Invalid Lightning Address %s: %s", address or self._address, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    async def request_invoice(
        self,
        callback: str,
        amount_msats: int,
        comment: str = "",
    ) -> InvoiceResponse:
        """Ask an LNURL callback for an invoice.

        Raises:
            InvoiceRequestError: On network failure, non-success status, an
                explicit error status, or a missing ``pr``.
        """
        params: dict[str, str] = {"amount": str(amount_msats)}
        if comment:
            params["comment"] = comment

        logger.debug("Requesting invoice: %d msats", amount_msats)
        client = await self._ensure_connected()
        try:
            response = await client.get(callback, params=params)
        except httpx.HTTPError as exc:
            msg = f"Failed to request invoice: {exc}"
            raise InvoiceRequestError(msg) from exc

        if not response.is_success:
            msg = f"Failed to request invoice: {response.status_code}"
            raise InvoiceRequestError(msg)

        try:
            return InvoiceResponse.from_dict(response.json())
        except (ValueError, TypeError, AttributeError) as exc:
            msg = f"Invalid invoice response: {exc}"
            raise InvoiceRequestError(msg) from exc

    async def generate_invoice(self, amount_sats: int, order_id: str) -> str:
        """Mint an invoice for an order.

        Args:
            amount_sats: Amount in satoshis.
            order_id: Order id; its first 8 characters become the comment.

        Returns:
            The opaque invoice string.

        Raises:
            ResolutionError: If the address cannot be resolved.
            AmountOutOfRange: If the amount is outside the endpoint's bounds.
            InvoiceRequestError: If the callback fails.
        """
        params = await self.resolve()
        amount_msats = amount_sats * _MSATS_PER_SAT
        if not params.accepts(amount_msats):
            raise AmountOutOfRange(amount_sats, params.min_sendable, params.max_sendable)

        comment = order_id[:_COMMENT_LENGTH]
        if params.comment_allowed is not None:
            comment = comment[: params.comment_allowed]

        invoice = await self.request_invoice(params.callback, amount_msats, comment)
        logger.info("Generated invoice for %d sats (Order %s)", amount_sats, order_id[:8])
        return invoice.pr

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_connected(self) -> httpx.AsyncClient:
        """Return the HTTP client, connecting lazily."""
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore[return-value]
