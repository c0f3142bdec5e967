"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubesentry.delivery.sentry import Dsn
from kubesentry.models.config import (
    DEFAULT_EVENT_LEVELS,
    DeliveryConfig,
    FilterPolicy,
    KubeSentryConfig,
    LogConfig,
    MetricsConfig,
    SentryConfig,
    WatchConfig,
)
from kubesentry.models.events import Level

_VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = _env(key, str(default)).strip() or str(default)
    try:
        val = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float = 0.0) -> float:
    raw = _env(key, str(default)).strip() or str(default)
    try:
        return max(float(raw), min_val)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def list_env(key: str, default: str = "") -> list[str]:
    """Split a comma-separated variable, trimming blanks and empty items.

    The default applies only when the variable is unset.
    """
    raw = os.environ.get(key)
    if raw is None:
        raw = default
    return [item.strip() for item in raw.split(",") if item.strip()]


def _validate_log_level(value: str) -> str:
    if value.lower() not in _VALID_LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {value}. Must be one of {sorted(_VALID_LOG_LEVELS)}")
    return value.lower()


def _validate_dsn(value: str) -> str:
    if not value:
        raise ConfigurationError("DSN is required")
    try:
        Dsn.parse(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid DSN: {exc}") from exc
    return value


def load_filter_policy() -> FilterPolicy:
    """Build the immutable FilterPolicy from the filter variables."""
    levels = frozenset(level.lower() for level in list_env("EVENT_LEVELS", ",".join(sorted(DEFAULT_EVENT_LEVELS))))
    return FilterPolicy(
        include_namespaces=frozenset(list_env("EVENT_NAMESPACES")),
        exclude_namespaces=frozenset(list_env("EVENT_NAMESPACES_EXCLUDED")),
        exclude_components=frozenset(list_env("COMPONENT_FILTER")),
        exclude_reasons=frozenset(list_env("REASON_FILTER")),
        min_levels=levels,
    )


def unrecognized_levels(policy: FilterPolicy) -> list[str]:
    """Configured event levels other than warning and error, sorted."""
    return sorted(policy.min_levels - {level.value for level in Level})


def load_config(log_level: str | None = None) -> KubeSentryConfig:
    """Load configuration from the environment.

    Args:
        log_level: Overrides LOG_LEVEL when given (e.g. from the CLI).

    Raises:
        ConfigurationError: if DSN is missing or any value is malformed.
    """
    return KubeSentryConfig(
        sentry=SentryConfig(
            dsn=_validate_dsn(_env("DSN").strip()),
            environment=_env("ENVIRONMENT"),
            release=_env("RELEASE"),
            cluster_name=_env("CLUSTER_NAME"),
        ),
        filters=load_filter_policy(),
        watch=WatchConfig(
            timeout_seconds=_env_int("WATCH_TIMEOUT_SECONDS", 300, min_val=1, max_val=3600),
            backoff_base=_env_float("WATCH_BACKOFF_BASE", 1.0, min_val=0.01),
            backoff_max=_env_float("WATCH_BACKOFF_MAX", 60.0, min_val=0.01),
            startup_retries=_env_int("STARTUP_RETRIES", 5, min_val=1, max_val=100),
        ),
        delivery=DeliveryConfig(
            queue_size=_env_int("DELIVERY_QUEUE_SIZE", 1000, min_val=1),
            concurrency=_env_int("DELIVERY_CONCURRENCY", 4, min_val=1, max_val=64),
            max_attempts=_env_int("DELIVERY_MAX_ATTEMPTS", 5, min_val=1, max_val=20),
            timeout_seconds=_env_float("DELIVERY_TIMEOUT", 10.0, min_val=0.1),
            shutdown_grace_seconds=_env_float("SHUTDOWN_GRACE_SECONDS", 15.0),
        ),
        log=LogConfig(
            level=_validate_log_level(log_level or _env("LOG_LEVEL", "info")),
            json_output=_env("LOG_FORMAT", "json").lower() != "console",
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
    )
