"""LNURL-pay protocol data models.

- LightningAddress — parsed and validated ``name@domain``
- PayParams — the ``.well-known/lnurlp`` pay-request document
- InvoiceResponse — the callback's invoice document
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from order_service.errors.lightning_errors import InvoiceRequestError, ResolutionError

_ADDRESS_REGEX = re.compile(r"^[a-z0-9._+-]+@[a-z0-9-]+(?:\.[a-z0-9-]+)*(?::\d+)?$")

# Defaults applied when an endpoint omits its bounds (millisatoshis)
DEFAULT_MIN_SENDABLE = 1_000
DEFAULT_MAX_SENDABLE = 100_000_000_000

_STATUS_ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class LightningAddress:
    """A validated Lightning Address.

    Attributes:
        name: The local part (before @), lowercased.
        domain: The domain part (after @), lowercased.
    """

    name: str
    domain: str

    @classmethod
    def from_string(cls, raw: str) -> LightningAddress:
        """Parse a Lightning Address like ``shop@getalby.com``.

        Raises:
            ResolutionError: If the address format is invalid.
        """
        raw = raw.strip().lower()
        if not _ADDRESS_REGEX.match(raw):
            msg = f"Invalid Lightning Address: {raw}"
            raise ResolutionError(msg)
        name, domain = raw.split("@", 1)
        return cls(name=name, domain=domain)

    @property
    def well_known_url(self) -> str:
        """LUD-16 resolution URL."""
        return f"https://{self.domain}/.well-known/lnurlp/{self.name}"

    def __str__(self) -> str:
        return f"{self.name}@{self.domain}"


@dataclass(slots=True)
class PayParams:
    """LNURL-pay parameters returned by the well-known endpoint.

    Attributes:
        callback: URL that mints invoices.
        min_sendable: Minimum amount, millisatoshis.
        max_sendable: Maximum amount, millisatoshis.
        metadata: Raw LNURL metadata string.
        tag: LNURL tag, normally ``payRequest``.
        comment_allowed: Max comment length, or None when undeclared.
    """

    callback: str
    min_sendable: int = DEFAULT_MIN_SENDABLE
    max_sendable: int = DEFAULT_MAX_SENDABLE
    metadata: str = ""
    tag: str = ""
    comment_allowed: int | None = None

    def accepts(self, amount_msats: int) -> bool:
        """Whether *amount_msats* lies within the declared bounds."""
        return self.min_sendable <= amount_msats <= self.max_sendable

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayParams:
        """Build from the endpoint's JSON.

        Raises:
            ResolutionError: On an explicit error status or a missing callback.
        """
        if data.get("status") == _STATUS_ERROR:
            msg = f"LNURL error: {data.get('reason') or 'Unknown error'}"
            raise ResolutionError(msg)
        callback = data.get("callback")
        if not callback or not isinstance(callback, str):
            msg = "Invalid LNURL response: missing callback"
            raise ResolutionError(msg)
        comment_allowed = data.get("commentAllowed")
        return cls(
            callback=callback,
            min_sendable=int(data.get("minSendable") or DEFAULT_MIN_SENDABLE),
            max_sendable=int(data.get("maxSendable") or DEFAULT_MAX_SENDABLE),
            metadata=str(data.get("metadata") or ""),
            tag=str(data.get("tag") or ""),
            comment_allowed=int(comment_allowed) if comment_allowed is not None else None,
        )


@dataclass(slots=True)
class InvoiceResponse:
    """Invoice document returned by the LNURL callback.

    Attributes:
        pr: The payment request (BOLT11 invoice), treated as opaque.
        routes: Optional routing hints.
    """

    pr: str
    routes: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InvoiceResponse:
        """Build from the callback's JSON.

        Raises:
            InvoiceRequestError: On an explicit error status or a missing ``pr``.
        """
        if data.get("status") == _STATUS_ERROR:
            msg = f"Invoice request error: {data.get('reason') or 'Unknown error'}"
            raise InvoiceRequestError(msg)
        pr = data.get("pr")
        if not pr or not isinstance(pr, str):
            msg = "Invalid invoice response: missing payment request"
            raise InvoiceRequestError(msg)
        return cls(pr=pr, routes=list(data.get("routes") or []))
