"""Lightning Address / LNURL-pay errors."""

from __future__ import annotations

from order_service.errors.service_errors import OrderServiceError


class LightningError(OrderServiceError):
    """Base error for invoice gateway failures."""

    def __init__(self, message: str, *, code: str = "lightning-error") -> None:
        super().__init__(message, code=code)


class ResolutionError(LightningError):
    """The Lightning Address could not be resolved to a pay endpoint."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="lnurl-resolution-failed")


class AmountOutOfRange(LightningError):
    """Requested amount lies outside the endpoint's min/max sendable.

    Bounds are carried in millisatoshis, as declared by the endpoint.
    """

    def __init__(self, amount_sats: int, min_sendable: int, max_sendable: int) -> None:
        if amount_sats * 1000 < min_sendable:
            message = f"Amount {amount_sats} sats is below minimum {min_sendable // 1000} sats"
        else:
            message = f"Amount {amount_sats} sats exceeds maximum {max_sendable // 1000} sats"
        super().__init__(message, code="amount-out-of-range")
        self.amount_sats = amount_sats
        self.min_sendable = min_sendable
        self.max_sendable = max_sendable


class InvoiceRequestError(LightningError):
    """The LNURL callback did not return an invoice."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invoice-request-failed")
