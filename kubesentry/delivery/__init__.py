"""Delivery of reports to the error-tracking backend.

Exports:
    DeliveryQueue    -- Bounded, non-blocking sink with retrying workers.
    DeliveryTask     -- A report plus its retry bookkeeping.
    QueueFullError   -- Raised by ``enqueue`` when the queue is at capacity.
    SentryTransport  -- Submits one report as a Sentry envelope via httpx.
    Dsn              -- Parsed Sentry DSN.
"""

from kubesentry.delivery.errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError
from kubesentry.delivery.queue import DeliveryQueue, DeliveryTask, QueueFullError
from kubesentry.delivery.sentry import Dsn, SentryTransport

__all__ = [
    "DeliveryError",
    "DeliveryQueue",
    "DeliveryTask",
    "Dsn",
    "PermanentDeliveryError",
    "QueueFullError",
    "SentryTransport",
    "TransientDeliveryError",
]
