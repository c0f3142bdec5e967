"""Delivery outcome classes raised by backend transports."""

from __future__ import annotations


class DeliveryError(Exception):
    """Base class for a failed delivery attempt."""


class TransientDeliveryError(DeliveryError):
    """Retryable failure (network, timeout, 5xx, rate limiting).

    Args:
        retry_after: Minimum seconds the backend asked us to wait, if any.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PermanentDeliveryError(DeliveryError):
    """The backend rejected the report; retrying cannot help."""
