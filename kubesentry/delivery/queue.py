"""Bounded delivery queue with retrying workers.

``enqueue`` never blocks: it either accepts the report or raises
QueueFullError immediately.  Capacity counts every report the queue still
owns, whether waiting, in flight, or sleeping before a retry, so the number
of pending reports never exceeds ``capacity``.

Workers pull ready tasks and call the transport.  Retryable failures are
parked in a min-heap keyed by ``next_retry_at``; a single scheduler task
moves them back to the ready queue when due.  No thread ever sleeps on a
retry.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import random
from dataclasses import dataclass, field
from typing import Protocol

from kubesentry.backoff import full_jitter_delay
from kubesentry.delivery.errors import PermanentDeliveryError, TransientDeliveryError
from kubesentry.models.events import Report
from kubesentry.observability.logging import get_logger
from kubesentry.observability.metrics import (
    deliveries_total,
    delivery_queue_pending,
    reports_lost_total,
)

_log = get_logger("delivery.queue")


class QueueFullError(Exception):
    """Raised by ``enqueue`` when the queue is at capacity or closed."""


class Transport(Protocol):
    """Backend capability: submit one report or raise a DeliveryError."""

    async def send(self, report: Report) -> object: ...


@dataclass
class DeliveryTask:
    """A report plus retry bookkeeping.  Owned by the queue."""

    report: Report
    attempts: int = 0
    next_retry_at: float = 0.0
    seq: int = field(default=0, compare=False)


class DeliveryQueue:
    """Asynchronous, bounded sink for reports.

    Args:
        transport:    Backend transport (``send(report)``).
        capacity:     Maximum number of reports held at once.
        concurrency:  Number of worker tasks, i.e. concurrent deliveries.
        max_attempts: Attempts per report before it is dropped.
        backoff_base: First retry delay in seconds.
        backoff_max:  Upper bound for retry delays.
        rng:          Random source for jitter; injectable for tests.
    """

    def __init__(
        self,
        transport: Transport,
        capacity: int = 1000,
        concurrency: int = 4,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        rng: random.Random | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._transport = transport
        self._capacity = capacity
        self._concurrency = max(concurrency, 1)
        self._max_attempts = max(max_attempts, 1)
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._rng = rng

        self._ready: asyncio.Queue[DeliveryTask] = asyncio.Queue()
        self._retry_heap: list[tuple[float, int, DeliveryTask]] = []
        self._retry_wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._seq = itertools.count()
        self._pending = 0
        self._accepting = False
        self._tasks: list[asyncio.Task[None]] = []

        self.delivered = 0
        self.failed = 0
        self.lost = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def pending(self) -> int:
        """Reports currently owned by the queue."""
        return self._pending

    @property
    def retrying(self) -> int:
        return len(self._retry_heap)

    async def start(self) -> None:
        """Spawn the workers and the retry scheduler."""
        if self._tasks:
            return
        for i in range(self._concurrency):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"delivery-worker-{i}"))
        self._tasks.append(asyncio.create_task(self._schedule_retries(), name="delivery-retry-scheduler"))
        self._accepting = True
        _log.info("delivery_queue_started", capacity=self._capacity, concurrency=self._concurrency)

    def enqueue(self, report: Report) -> DeliveryTask:
        """Accept *report* for asynchronous delivery.

        Raises:
            QueueFullError: the queue holds ``capacity`` reports or is closed.
        """
        if not self._accepting:
            raise QueueFullError("delivery queue is not accepting reports")
        if self._pending >= self._capacity:
            raise QueueFullError(f"delivery queue full ({self._capacity} pending)")

        task = DeliveryTask(report=report, seq=next(self._seq))
        self._pending += 1
        self._idle.clear()
        delivery_queue_pending.set(self._pending)
        self._ready.put_nowait(task)
        return task

    async def drain(self, timeout: float) -> bool:
        """Stop accepting and wait up to *timeout* seconds for pending reports.

        Returns True if everything was delivered or dropped within the period.
        """
        self._accepting = False
        if self._pending == 0:
            return True
        _log.info("delivery_queue_draining", pending=self._pending, timeout=timeout)
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self, grace: float = 0.0) -> int:
        """Drain for up to *grace* seconds, then cancel everything.

        Returns the number of reports abandoned (counted as lost).
        """
        if grace > 0:
            await self.drain(grace)
        self._accepting = False

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        abandoned = self._pending
        if abandoned:
            self.lost += abandoned
            reports_lost_total.labels(cause="shutdown").inc(abandoned)
            _log.warning("delivery_queue_abandoned", abandoned=abandoned)
        self._pending = 0
        self._retry_heap.clear()
        self._idle.set()
        delivery_queue_pending.set(0)
        _log.info(
            "delivery_queue_stopped",
            delivered=self.delivered,
            failed=self.failed,
            lost=self.lost,
        )
        return abandoned

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self) -> None:
        while True:
            task = await self._ready.get()
            try:
                await self._deliver(task)
            finally:
                self._ready.task_done()

    async def _deliver(self, task: DeliveryTask) -> None:
        task.attempts += 1
        fingerprint = list(task.report.fingerprint)
        try:
            await self._transport.send(task.report)
        except TransientDeliveryError as exc:
            if task.attempts >= self._max_attempts:
                deliveries_total.labels(outcome="exhausted").inc()
                _log.error(
                    "delivery_retries_exhausted",
                    attempts=task.attempts,
                    fingerprint=fingerprint,
                    error=str(exc),
                )
                self._finish(task, delivered=False)
                return
            self._schedule_retry(task, exc.retry_after)
            deliveries_total.labels(outcome="retry").inc()
            _log.warning(
                "delivery_retry_scheduled",
                attempt=task.attempts,
                fingerprint=fingerprint,
                error=str(exc),
            )
        except PermanentDeliveryError as exc:
            deliveries_total.labels(outcome="permanent_failure").inc()
            _log.error("delivery_rejected", fingerprint=fingerprint, error=str(exc))
            self._finish(task, delivered=False)
        except Exception as exc:  # noqa: BLE001
            deliveries_total.labels(outcome="permanent_failure").inc()
            _log.error("delivery_unexpected_error", fingerprint=fingerprint, error=repr(exc))
            self._finish(task, delivered=False)
        else:
            deliveries_total.labels(outcome="success").inc()
            self._finish(task, delivered=True)

    def _finish(self, task: DeliveryTask, delivered: bool) -> None:
        if delivered:
            self.delivered += 1
        else:
            self.failed += 1
        self._pending -= 1
        delivery_queue_pending.set(self._pending)
        if self._pending == 0:
            self._idle.set()

    # ------------------------------------------------------------------
    # Retry scheduling
    # ------------------------------------------------------------------

    def _schedule_retry(self, task: DeliveryTask, retry_after: float | None) -> None:
        delay = full_jitter_delay(task.attempts, self._backoff_base, self._backoff_max, self._rng)
        if retry_after is not None:
            delay = max(delay, retry_after)
        task.next_retry_at = asyncio.get_running_loop().time() + delay
        heapq.heappush(self._retry_heap, (task.next_retry_at, task.seq, task))
        self._retry_wakeup.set()

    async def _schedule_retries(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._retry_wakeup.clear()
            now = loop.time()
            while self._retry_heap and self._retry_heap[0][0] <= now:
                _, _, task = heapq.heappop(self._retry_heap)
                self._ready.put_nowait(task)

            timeout = self._retry_heap[0][0] - now if self._retry_heap else None
            try:
                await asyncio.wait_for(self._retry_wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass
