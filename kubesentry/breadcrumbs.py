"""Bounded trail of recently observed cluster events.

Every event seen on the feed is recorded, forwarded or not, so reports carry
the surrounding cluster activity.  Only the watch loop touches the trail.
"""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime

from kubesentry.models.events import Breadcrumb, RawEvent

MAX_BREADCRUMBS = 100

_BREADCRUMB_LEVELS = frozenset({"debug", "info", "warning", "error", "fatal"})


def breadcrumb_level(event_level: str) -> str:
    """Sentry breadcrumb level for a cluster event level; Normal and unknown levels become ``info``."""
    return event_level if event_level in _BREADCRUMB_LEVELS else "info"


class BreadcrumbTrail:
    """Keeps the last ``maxlen`` events as breadcrumbs, oldest first."""

    def __init__(self, maxlen: int = MAX_BREADCRUMBS) -> None:
        self._trail: deque[Breadcrumb] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._trail)

    def record(self, event: RawEvent) -> None:
        self._trail.append(
            Breadcrumb(
                message=event.message,
                level=breadcrumb_level(event.level),
                timestamp=event.last_seen or event.first_seen or datetime.now(tz=UTC),
                namespace=event.namespace,
                name=event.name,
            )
        )

    def snapshot(self) -> tuple[Breadcrumb, ...]:
        return tuple(self._trail)
