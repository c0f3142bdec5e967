"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubesentry.models.events import Level

DEFAULT_EVENT_LEVELS: frozenset[str] = frozenset({Level.WARNING.value, Level.ERROR.value})


@dataclass(frozen=True)
class FilterPolicy:
    """Which cluster events are forwarded.

    Loaded once at startup and shared read-only by the watch loop and the
    delivery workers.  Empty ``include_namespaces`` means every namespace.
    Error-level events bypass ``min_levels`` but not the other exclusions.
    """

    include_namespaces: frozenset[str] = frozenset()
    exclude_namespaces: frozenset[str] = frozenset()
    exclude_components: frozenset[str] = frozenset()
    exclude_reasons: frozenset[str] = frozenset()
    min_levels: frozenset[str] = DEFAULT_EVENT_LEVELS


@dataclass
class SentryConfig:
    """Error-tracking backend configuration."""

    dsn: str = ""
    environment: str = ""
    release: str = ""
    cluster_name: str = ""


@dataclass
class WatchConfig:
    """Cluster event feed configuration."""

    timeout_seconds: int = 300
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    startup_retries: int = 5


@dataclass
class DeliveryConfig:
    """Delivery queue configuration."""

    queue_size: int = 1000
    concurrency: int = 4
    max_attempts: int = 5
    timeout_seconds: float = 10.0
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    shutdown_grace_seconds: float = 15.0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    json_output: bool = True


@dataclass
class MetricsConfig:
    """Prometheus exposition configuration."""

    port: int = 0


@dataclass
class KubeSentryConfig:
    """Top-level kubesentry configuration."""

    sentry: SentryConfig = field(default_factory=SentryConfig)
    filters: FilterPolicy = field(default_factory=FilterPolicy)
    watch: WatchConfig = field(default_factory=WatchConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    log: LogConfig = field(default_factory=LogConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
