"""Kubernetes Event feed backed by kubernetes-asyncio.

The source is the only place that talks to the cluster API.  It yields
``(type, raw_object)`` pairs from a single watch request and translates
transport failures into the collector's error classes:

* HTTP 410 Gone (as an ApiException or an ERROR watch event) -> StaleTokenError
* any other API status, connection error or timeout -> TransientWatchError

A watch that the server ends at ``timeout_seconds`` simply finishes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from kubesentry.collector.errors import HTTP_GONE, StaleTokenError, TransientWatchError
from kubesentry.models.events import WatchEventType
from kubesentry.observability.logging import get_logger

_log = get_logger("collector.source")


def _translate(exc: ApiException) -> StaleTokenError | TransientWatchError:
    if exc.status == HTTP_GONE:
        return StaleTokenError(f"resource version too old: {exc.reason}")
    return TransientWatchError(f"watch failed with status {exc.status}: {exc.reason}")


class KubernetesEventSource:
    """Opens watches over ``core/v1`` Events in all namespaces.

    Args:
        api:             CoreV1Api to use.  Created lazily when omitted so that
                         the kube config is loaded first.
        timeout_seconds: Server-side watch timeout; the stream ends cleanly
                         when it elapses.
    """

    def __init__(self, api: Any = None, timeout_seconds: int = 300) -> None:
        self._api = api
        self._timeout_seconds = timeout_seconds

    @property
    def has_api(self) -> bool:
        return self._api is not None

    @property
    def api(self) -> Any:
        if self._api is None:
            self._api = k8s_client.CoreV1Api()
        return self._api

    async def check_reachable(self) -> None:
        """Issue one cheap list call; raises TransientWatchError if the API is unreachable."""
        try:
            await self.api.list_event_for_all_namespaces(limit=1)
        except ApiException as exc:
            raise _translate(exc) from exc
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            raise TransientWatchError(f"cluster API unreachable: {exc}") from exc

    async def stream(self, resource_version: str | None) -> AsyncGenerator[tuple[WatchEventType, dict[str, Any]], None]:
        """Yield change notifications from one watch request."""
        kwargs: dict[str, Any] = {
            "timeout_seconds": self._timeout_seconds,
            "allow_watch_bookmarks": True,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version

        _log.debug("watch_request", resource_version=resource_version or None)
        try:
            async with watch.Watch().stream(self.api.list_event_for_all_namespaces, **kwargs) as stream:
                async for item in stream:
                    raw = item.get("raw_object")
                    if not isinstance(raw, dict):
                        continue
                    try:
                        event_type = WatchEventType(item.get("type", ""))
                    except ValueError:
                        _log.debug("watch_unknown_type", type=item.get("type"))
                        continue
                    yield event_type, raw
        except ApiException as exc:
            raise _translate(exc) from exc
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            raise TransientWatchError(f"watch connection failed: {exc}") from exc
