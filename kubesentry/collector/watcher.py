"""Resumable watch session over the cluster Event feed.

State machine::

    CONNECTING -> STREAMING -> CLOSED | ERRORED
         ^                        |
         +------- reconnect() ----+

``open()`` yields RawEvents and, at most once, a terminal WatchError.
``reconnect()`` moves a finished session back to CONNECTING:

* CLOSED (server ended the watch): immediately, same token.
* ERRORED with StaleTokenError: immediately, token reset to None.
* ERRORED with TransientWatchError: after full-jitter back-off, same token.

The resumption token is owned by the session alone.  It advances on
BOOKMARK and DELETED notifications, neither of which is forwarded, and
after the consumer has finished with an event, i.e. when the consumer asks
for the next item.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from enum import StrEnum
from typing import Any, Protocol

from kubesentry.backoff import full_jitter_delay
from kubesentry.collector.errors import HTTP_GONE, StaleTokenError, TransientWatchError, WatchError
from kubesentry.models.events import RawEvent, WatchEventType
from kubesentry.observability.logging import get_logger
from kubesentry.observability.metrics import watch_reconnects_total

_log = get_logger("collector.watcher")


class EventSource(Protocol):
    """Cluster API capability required by the session."""

    def stream(self, resource_version: str | None) -> AsyncGenerator[tuple[WatchEventType, dict[str, Any]], None]: ...


class WatchState(StrEnum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERRORED = "errored"


def _resource_version(obj: dict[str, Any]) -> str:
    meta = obj.get("metadata") or {}
    rv = meta.get("resourceVersion")
    return rv if isinstance(rv, str) else ""


def _status_error(obj: dict[str, Any]) -> WatchError:
    """Classify the Status object carried by an ERROR watch notification."""
    code = obj.get("code")
    message = obj.get("message") or obj.get("reason") or "watch error"
    if code == HTTP_GONE or obj.get("reason") in ("Expired", "Gone"):
        return StaleTokenError(str(message))
    return TransientWatchError(f"watch error {code}: {message}")


class WatchSession:
    """One logical subscription that survives disconnects.

    Args:
        source:       Cluster API capability opening a single watch.
        backoff_base: Minimum delay before reconnecting after a transient error.
        backoff_max:  Upper bound for the reconnect delay.
        sleep:        Awaitable sleep; injectable for tests.
        rng:          Random source for jitter; injectable for tests.
    """

    def __init__(
        self,
        source: EventSource,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._source = source
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._sleep = sleep
        self._rng = rng
        self._token: str | None = None
        self._failures = 0
        self.state = WatchState.CONNECTING
        self.last_error: WatchError | None = None
        self.last_delay = 0.0

    @property
    def token(self) -> str | None:
        """Last successfully observed resource version, or None before the first one."""
        return self._token

    async def open(self, token: str | None = None) -> AsyncGenerator[RawEvent | WatchError, None]:
        """Stream events from a single watch, resuming at *token* when given."""
        self._token = token
        self.state = WatchState.CONNECTING
        self.last_error = None
        _log.info("watch_connecting", resource_version=token)

        try:
            async with aclosing(self._source.stream(token)) as feed:
                async for event_type, obj in feed:
                    self.state = WatchState.STREAMING
                    rv = _resource_version(obj)

                    if event_type in (WatchEventType.BOOKMARK, WatchEventType.DELETED):
                        if rv:
                            self._token = rv
                        continue

                    if event_type is WatchEventType.ERROR:
                        error = _status_error(obj)
                        self.state = WatchState.ERRORED
                        self.last_error = error
                        yield error
                        return

                    yield RawEvent.from_object(obj, event_type)
                    if rv:
                        self._token = rv
                    self._failures = 0
        except WatchError as exc:
            self.state = WatchState.ERRORED
            self.last_error = exc
            yield exc
            return
        except Exception as exc:  # noqa: BLE001
            _log.error("watch_unexpected_error", error=repr(exc), exc_info=True)
            self.state = WatchState.ERRORED
            self.last_error = TransientWatchError(f"unexpected watch failure: {exc!r}")
            yield self.last_error
            return

        self.state = WatchState.CLOSED

    async def reconnect(self) -> str | None:
        """Prepare the next ``open()``; returns the token to resume from."""
        self.last_delay = 0.0

        if self.state is WatchState.ERRORED and isinstance(self.last_error, StaleTokenError):
            _log.warning("watch_token_expired", resource_version=self._token, error=str(self.last_error))
            watch_reconnects_total.labels(cause="stale_token").inc()
            self._token = None
        elif self.state is WatchState.ERRORED:
            self._failures += 1
            self.last_delay = full_jitter_delay(self._failures, self._backoff_base, self._backoff_max, self._rng)
            _log.warning(
                "watch_transient_error",
                error=str(self.last_error),
                attempt=self._failures,
                retry_in=round(self.last_delay, 3),
            )
            watch_reconnects_total.labels(cause="transient").inc()
            await self._sleep(self.last_delay)
        else:
            _log.debug("watch_closed", resource_version=self._token)
            watch_reconnects_total.labels(cause="closed").inc()

        self.state = WatchState.CONNECTING
        return self._token
