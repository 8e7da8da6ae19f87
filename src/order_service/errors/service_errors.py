"""OrderServiceError — base exception class for all order-service errors."""

from __future__ import annotations


class OrderServiceError(Exception):
    """Base error for all order-service operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "order-service-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(OrderServiceError):
    """Invalid or incomplete service configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="config-error")


class KeyDecodeError(OrderServiceError):
    """A bech32 / hex key could not be decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="key-decode-error")
