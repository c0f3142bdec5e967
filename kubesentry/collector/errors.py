"""Watch feed error classes."""

from __future__ import annotations

HTTP_GONE = 410


class WatchError(Exception):
    """Terminal error for one watch session."""


class TransientWatchError(WatchError):
    """Network failure or timeout; resume from the last token after back-off."""


class StaleTokenError(WatchError):
    """The cluster rejected the resumption token; resync from scratch."""
