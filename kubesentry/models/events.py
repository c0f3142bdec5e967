"""Core event data structures and enumerations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class Level(StrEnum):
    """Report level understood by the error-tracking backend."""

    WARNING = "warning"
    ERROR = "error"


class WatchEventType(StrEnum):
    """Change notification types emitted by a Kubernetes watch."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


def _parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _str(value: object) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class RawEvent:
    """A cluster Event as observed on the watch feed.

    Produced by the collector, read by the filter and the mapper.
    Immutable: nothing downstream may mutate a RawEvent.
    """

    namespace: str
    kind: str
    name: str
    reason: str
    message: str
    component: str
    level: str
    uid: str = ""
    host: str = "n/a"
    count: int = 1
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    event_type: WatchEventType | None = None
    resource_version: str = ""
    metadata: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_object(cls, obj: dict[str, Any], event_type: WatchEventType | None = None) -> RawEvent:
        """Build a RawEvent from the JSON dict of a ``core/v1`` Event."""
        meta: dict[str, Any] = obj.get("metadata") or {}
        involved: dict[str, Any] = obj.get("involvedObject") or {}
        source: dict[str, Any] = obj.get("source") or {}
        series: dict[str, Any] = obj.get("series") or {}

        namespace = _str(involved.get("namespace")) or _str(meta.get("namespace")) or "default"
        count = obj.get("count") or series.get("count") or 1
        created = _parse_timestamp(meta.get("creationTimestamp"))
        event_time = _parse_timestamp(obj.get("eventTime"))

        return cls(
            namespace=namespace,
            kind=_str(involved.get("kind")),
            name=_str(involved.get("name")),
            uid=_str(involved.get("uid")),
            reason=_str(obj.get("reason")),
            message=_str(obj.get("message")),
            component=_str(source.get("component")) or _str(obj.get("reportingComponent")),
            host=_str(source.get("host")) or "n/a",
            level=_str(obj.get("type")).lower(),
            count=int(count),
            first_seen=_parse_timestamp(obj.get("firstTimestamp")) or event_time or created,
            last_seen=_parse_timestamp(obj.get("lastTimestamp")) or event_time or created,
            event_type=event_type,
            resource_version=_str(meta.get("resourceVersion")),
            metadata=MappingProxyType({k: v for k, v in meta.items() if k != "managedFields"}),
        )

    @property
    def is_error(self) -> bool:
        return self.level == Level.ERROR


@dataclass(frozen=True)
class Breadcrumb:
    """One entry of the recent-activity trail attached to reports."""

    message: str
    level: str
    timestamp: datetime
    namespace: str
    name: str


@dataclass(frozen=True)
class Report:
    """Delivery-ready unit created from exactly one RawEvent.

    ``fingerprint`` is the backend grouping key; ``count`` is only surfaced
    as a tag so recurrence never changes the group.
    """

    message: str
    level: Level
    fingerprint: tuple[str, ...]
    tags: MappingProxyType[str, str]
    timestamp: datetime
    culprit: str = ""
    server_name: str = ""
    count: int = 1
    extra: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    breadcrumbs: tuple[Breadcrumb, ...] = ()
