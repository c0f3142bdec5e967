"""Watch -> filter -> map -> enqueue orchestration.

The watch loop is strictly sequential: one event is filtered, mapped and
handed to the delivery queue before the next one is pulled.  It suspends
only while waiting on the feed and during reconnect back-off, which are
also the only places shutdown can interrupt it.
"""

from __future__ import annotations

import asyncio

from kubesentry.breadcrumbs import BreadcrumbTrail
from kubesentry.collector.errors import WatchError
from kubesentry.collector.watcher import WatchSession
from kubesentry.delivery.queue import DeliveryQueue, QueueFullError
from kubesentry.filters import drop_reason
from kubesentry.mapper import map_event
from kubesentry.models.config import FilterPolicy
from kubesentry.models.events import RawEvent
from kubesentry.observability.logging import get_logger
from kubesentry.observability.metrics import (
    events_filtered_total,
    events_received_total,
    reports_enqueued_total,
    reports_lost_total,
)

_log = get_logger("pipeline")


class Pipeline:
    """Owns the run loop and its shutdown.

    Args:
        session:        Watch session over the cluster Event feed.
        policy:         Immutable filter policy.
        queue:          Delivery queue; started and stopped by ``run``.
        cluster_name:   ``cluster`` tag for every report.
        shutdown_grace: Seconds the queue may drain after shutdown is requested.
        trail:          Breadcrumb trail; a fresh one when omitted.
    """

    def __init__(
        self,
        session: WatchSession,
        policy: FilterPolicy,
        queue: DeliveryQueue,
        cluster_name: str = "",
        shutdown_grace: float = 15.0,
        trail: BreadcrumbTrail | None = None,
    ) -> None:
        self._session = session
        self._policy = policy
        self._queue = queue
        self._cluster_name = cluster_name
        self._shutdown_grace = shutdown_grace
        self._trail = trail if trail is not None else BreadcrumbTrail()
        self._stopping = False
        self._watch_task: asyncio.Task[None] | None = None

        self.forwarded = 0
        self.filtered = 0
        self.lost = 0

    @property
    def stopping(self) -> bool:
        return self._stopping

    def request_shutdown(self) -> None:
        """Stop pulling events; the queue then drains within the grace period."""
        if self._stopping:
            return
        self._stopping = True
        _log.info("pipeline_shutdown_requested")
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()

    async def run(self) -> None:
        """Run until ``request_shutdown`` is called, then drain the queue."""
        await self._queue.start()
        self._watch_task = asyncio.create_task(self._watch_loop(), name="watch-loop")
        try:
            await self._watch_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
        finally:
            grace = self._shutdown_grace if self._stopping else 0.0
            abandoned = await self._queue.stop(grace=grace)
            _log.info(
                "pipeline_stopped",
                forwarded=self.forwarded,
                filtered=self.filtered,
                lost=self.lost + abandoned,
            )

    async def _watch_loop(self) -> None:
        token = self._session.token
        while not self._stopping:
            stream = self._session.open(token)
            try:
                async for item in stream:
                    if isinstance(item, WatchError):
                        break
                    self._process_safely(item)
                    if self._stopping:
                        return
            finally:
                await stream.aclose()
            token = await self._session.reconnect()

    def _process_safely(self, event: RawEvent) -> None:
        try:
            self.process(event)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "event_processing_failed",
                namespace=event.namespace,
                name=event.name,
                reason=event.reason,
                error=repr(exc),
            )

    def process(self, event: RawEvent) -> bool:
        """Filter, map and enqueue one event.  Returns True if it was enqueued."""
        events_received_total.inc()
        dropped = drop_reason(event, self._policy)
        if dropped is not None:
            self.filtered += 1
            events_filtered_total.labels(reason=dropped.value).inc()
            _log.debug(
                "event_filtered",
                filter=dropped.value,
                namespace=event.namespace,
                source_component=event.component,
                reason=event.reason,
                event_level=event.level,
            )
            self._trail.record(event)
            return False

        report = map_event(event, cluster_name=self._cluster_name, breadcrumbs=self._trail.snapshot())
        self._trail.record(event)

        try:
            self._queue.enqueue(report)
        except QueueFullError as exc:
            self.lost += 1
            reports_lost_total.labels(cause="queue_full").inc()
            _log.warning(
                "report_dropped",
                error=str(exc),
                fingerprint=list(report.fingerprint),
            )
            return False

        self.forwarded += 1
        reports_enqueued_total.inc()
        return True
