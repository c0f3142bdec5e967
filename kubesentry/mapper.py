"""Map cluster events to delivery-ready reports.

``map_event`` is deterministic: identical events always produce identical
fingerprints, tags and messages.  The message is copied verbatim; length
limits are the backend's business.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from types import MappingProxyType

from kubesentry.models.events import Breadcrumb, Level, RawEvent, Report

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def fingerprint_for(event: RawEvent) -> tuple[str, ...]:
    """Grouping key: repeated occurrences on the same object share one issue."""
    return (event.kind, event.namespace, event.name, event.reason)


def culprit_for(event: RawEvent) -> str:
    if event.namespace and event.name:
        obj = f"{event.namespace}/{event.name}"
    else:
        obj = event.namespace
    return f"{obj} {event.reason}".strip()


def _tags(event: RawEvent, cluster_name: str) -> dict[str, str]:
    candidates = {
        "cluster": cluster_name,
        "namespace": event.namespace,
        "kind": event.kind,
        "name": event.name,
        "reason": event.reason,
        "component": event.component,
        "count": str(event.count),
    }
    return {key: value for key, value in candidates.items() if value}


def map_event(
    event: RawEvent,
    cluster_name: str = "",
    breadcrumbs: Sequence[Breadcrumb] = (),
) -> Report:
    """Build the Report for *event*.

    Args:
        event:        The forwarded cluster event.
        cluster_name: Added as the ``cluster`` tag when non-empty.
        breadcrumbs:  Recent activity to attach, oldest first.
    """
    return Report(
        message=event.message,
        level=Level.ERROR if event.is_error else Level.WARNING,
        fingerprint=fingerprint_for(event),
        tags=MappingProxyType(_tags(event, cluster_name)),
        timestamp=event.last_seen or event.first_seen or _EPOCH,
        culprit=culprit_for(event),
        server_name=event.host,
        count=event.count,
        extra=event.metadata,
        breadcrumbs=tuple(breadcrumbs),
    )
