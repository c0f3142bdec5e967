"""Core data structures for kubesentry."""

from kubesentry.models.config import (
    DeliveryConfig,
    FilterPolicy,
    KubeSentryConfig,
    LogConfig,
    MetricsConfig,
    SentryConfig,
    WatchConfig,
)
from kubesentry.models.events import (
    Breadcrumb,
    Level,
    RawEvent,
    Report,
    WatchEventType,
)

__all__ = [
    "Breadcrumb",
    "DeliveryConfig",
    "FilterPolicy",
    "KubeSentryConfig",
    "Level",
    "LogConfig",
    "MetricsConfig",
    "RawEvent",
    "Report",
    "SentryConfig",
    "WatchConfig",
    "WatchEventType",
]
