"""Tests for WatchSession token handling and reconnect behaviour."""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator
from typing import Any

from kubesentry.collector.errors import StaleTokenError, TransientWatchError, WatchError
from kubesentry.collector.watcher import WatchSession, WatchState
from kubesentry.models.events import RawEvent, WatchEventType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _event(rv: str, reason: str = "BackOff") -> tuple[WatchEventType, dict[str, Any]]:
    return (
        WatchEventType.ADDED,
        {
            "metadata": {"name": f"web.{rv}", "namespace": "prod", "resourceVersion": rv},
            "involvedObject": {"kind": "Pod", "name": "web", "namespace": "prod"},
            "reason": reason,
            "message": "Back-off restarting failed container",
            "source": {"component": "kubelet"},
            "type": "Warning",
        },
    )


def _bookmark(rv: str) -> tuple[WatchEventType, dict[str, Any]]:
    return WatchEventType.BOOKMARK, {"metadata": {"resourceVersion": rv}}


class ScriptedSource:
    """Plays back one script per ``stream()`` call; exceptions in a script are raised."""

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.requested: list[str | None] = []

    async def stream(self, resource_version: str | None) -> AsyncGenerator[tuple[WatchEventType, dict[str, Any]], None]:
        self.requested.append(resource_version)
        script = self._scripts.pop(0) if self._scripts else []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _drain(session: WatchSession, token: str | None = None) -> list[RawEvent | WatchError]:
    return [item async for item in session.open(token)]


def _session(source: ScriptedSource, sleep: SleepRecorder | None = None) -> WatchSession:
    return WatchSession(
        source=source,
        backoff_base=0.5,
        backoff_max=8.0,
        sleep=sleep or SleepRecorder(),
        rng=random.Random(7),
    )


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreaming:
    async def test_yields_events_and_closes(self) -> None:
        source = ScriptedSource([_event("10"), _event("11")])
        session = _session(source)

        items = await _drain(session)

        assert [item.resource_version for item in items if isinstance(item, RawEvent)] == ["10", "11"]
        assert session.state is WatchState.CLOSED
        assert session.token == "11"
        assert source.requested == [None]

    async def test_bookmark_only_moves_token(self) -> None:
        session = _session(ScriptedSource([_event("10"), _bookmark("42")]))

        items = await _drain(session)

        assert len(items) == 1
        assert session.token == "42"

    async def test_token_advances_only_after_event_is_consumed(self) -> None:
        session = _session(ScriptedSource([_event("10"), _event("11")]))
        stream = session.open("9")

        first = await stream.__anext__()
        assert isinstance(first, RawEvent)
        assert first.resource_version == "10"
        assert session.token == "9"

        await stream.__anext__()
        assert session.token == "10"
        await stream.aclose()

    async def test_deleted_notification_is_not_forwarded(self) -> None:
        added = _event("10")
        deleted = (WatchEventType.DELETED, {**added[1], "metadata": {**added[1]["metadata"], "resourceVersion": "11"}})
        session = _session(ScriptedSource([added, deleted]))

        items = await _drain(session)

        assert [item.resource_version for item in items if isinstance(item, RawEvent)] == ["10"]
        assert len(items) == 1
        assert session.token == "11"
        assert session.state is WatchState.CLOSED

    async def test_resumes_from_given_token(self) -> None:
        source = ScriptedSource([])
        session = _session(source)

        await _drain(session, "123")

        assert source.requested == ["123"]
        assert session.token == "123"


# ---------------------------------------------------------------------------
# Errors and reconnect
# ---------------------------------------------------------------------------


class TestReconnect:
    async def test_stale_token_resets_without_delay(self) -> None:
        sleep = SleepRecorder()
        source = ScriptedSource([_event("10"), StaleTokenError("too old")], [])
        session = _session(source, sleep)

        items = await _drain(session, "5")
        assert isinstance(items[-1], StaleTokenError)
        assert session.state is WatchState.ERRORED

        token = await session.reconnect()

        assert token is None
        assert session.token is None
        assert session.state is WatchState.CONNECTING
        assert sleep.delays == []

        await _drain(session, token)
        assert source.requested == ["5", None]

    async def test_transient_error_keeps_token_and_backs_off(self) -> None:
        sleep = SleepRecorder()
        session = _session(ScriptedSource([_event("10"), TransientWatchError("connection reset")]), sleep)

        items = await _drain(session)
        assert isinstance(items[-1], TransientWatchError)

        token = await session.reconnect()

        assert token == "10"
        assert session.state is WatchState.CONNECTING
        assert len(sleep.delays) == 1
        assert sleep.delays[0] >= 0.5

    async def test_repeated_failures_stay_within_bounds(self) -> None:
        sleep = SleepRecorder()
        failures = [[TransientWatchError("down")] for _ in range(6)]
        session = _session(ScriptedSource(*failures), sleep)

        token = None
        for _ in range(6):
            await _drain(session, token)
            token = await session.reconnect()

        assert all(0.5 <= delay <= 8.0 for delay in sleep.delays)
        assert session.last_delay == sleep.delays[-1]

    async def test_clean_close_reconnects_immediately(self) -> None:
        sleep = SleepRecorder()
        session = _session(ScriptedSource([_event("10")]), sleep)

        await _drain(session)
        token = await session.reconnect()

        assert token == "10"
        assert sleep.delays == []

    async def test_error_notification_with_gone_status_is_stale(self) -> None:
        status = {"kind": "Status", "code": 410, "reason": "Expired", "message": "too old resource version"}
        session = _session(ScriptedSource([_event("10"), (WatchEventType.ERROR, status), _event("11")]))

        items = await _drain(session)

        assert isinstance(items[-1], StaleTokenError)
        assert len(items) == 2
        assert await session.reconnect() is None

    async def test_error_notification_with_other_status_is_transient(self) -> None:
        status = {"kind": "Status", "code": 500, "message": "etcd leader changed"}
        session = _session(ScriptedSource([(WatchEventType.ERROR, status)]))

        items = await _drain(session, "3")

        assert isinstance(items[-1], TransientWatchError)
        assert await session.reconnect() == "3"

    async def test_unexpected_exception_is_treated_as_transient(self) -> None:
        session = _session(ScriptedSource([RuntimeError("boom")]))

        items = await _drain(session)

        assert isinstance(items[-1], TransientWatchError)
        assert session.state is WatchState.ERRORED
