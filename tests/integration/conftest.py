"""Shared fixtures for kubesentry integration tests.

Provides Event object factories, a scripted watch source and a recording
transport so the pipeline can be exercised end to end without a cluster or
a Sentry backend.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncGenerator
from typing import Any

from kubesentry.mapper import map_event
from kubesentry.models.events import RawEvent, Report, WatchEventType

_rv = itertools.count(1000)

# ---------------------------------------------------------------------------
# Event factory helpers
# ---------------------------------------------------------------------------


def make_event_object(
    reason: str = "BackOff",
    message: str = "Back-off restarting failed container",
    kind: str = "Pod",
    name: str = "web-7b4f8c6d-x2kj",
    namespace: str = "default",
    level: str = "Warning",
    component: str = "kubelet",
    count: int = 1,
    resource_version: str = "",
) -> dict[str, Any]:
    """Create a core/v1 Event dict as it appears on the watch feed."""
    rv = resource_version or str(next(_rv))
    return {
        "metadata": {
            "name": f"{name}.{rv}",
            "namespace": namespace,
            "resourceVersion": rv,
            "creationTimestamp": "2024-05-01T10:00:00Z",
        },
        "involvedObject": {"kind": kind, "name": name, "namespace": namespace},
        "reason": reason,
        "message": message,
        "source": {"component": component, "host": "node-1"},
        "type": level,
        "count": count,
        "firstTimestamp": "2024-05-01T10:00:00Z",
        "lastTimestamp": "2024-05-01T10:05:00Z",
    }


def added(obj: dict[str, Any]) -> tuple[WatchEventType, dict[str, Any]]:
    return WatchEventType.ADDED, obj


def make_report(reason: str = "BackOff", name: str = "web") -> Report:
    return map_event(RawEvent.from_object(make_event_object(reason=reason, name=name)))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedSource:
    """Watch source that plays back one script per ``stream()`` call.

    Exceptions inside a script are raised at that point.  Once the scripts
    run out, ``stream()`` blocks until cancelled, like an idle watch.
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.requested: list[str | None] = []
        self.exhausted = asyncio.Event()

    async def stream(self, resource_version: str | None) -> AsyncGenerator[tuple[WatchEventType, dict[str, Any]], None]:
        self.requested.append(resource_version)
        if not self._scripts:
            self.exhausted.set()
            await asyncio.Event().wait()
        for item in self._scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item


class RecordingTransport:
    """Transport double that records reports and plays back scripted outcomes.

    Each call to ``send`` pops the next outcome: None for success, or an
    exception to raise.  When ``gate`` is set, every send waits on it first.
    """

    def __init__(self, outcomes: list[BaseException | None] | None = None, gate: asyncio.Event | None = None) -> None:
        self._outcomes = list(outcomes or [])
        self.gate = gate
        self.calls: list[Report] = []
        self.sent: list[Report] = []
        self.call_times: list[float] = []

    async def send(self, report: Report) -> str:
        self.calls.append(report)
        self.call_times.append(asyncio.get_running_loop().time())
        if self.gate is not None:
            await self.gate.wait()
        outcome = self._outcomes.pop(0) if self._outcomes else None
        if outcome is not None:
            raise outcome
        self.sent.append(report)
        return f"evt-{len(self.sent)}"


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll *predicate* until it is true or *timeout* elapses."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)
