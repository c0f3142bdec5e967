"""Integration tests for the bounded DeliveryQueue.

Tests cover: non-blocking rejection at capacity, the pending bound, retry
then success, permanent rejection, retry exhaustion, Retry-After, and
draining on stop.
"""

from __future__ import annotations

import asyncio
import random

import pytest

from kubesentry.delivery.errors import PermanentDeliveryError, TransientDeliveryError
from kubesentry.delivery.queue import DeliveryQueue, QueueFullError

from .conftest import RecordingTransport, make_report, wait_until


def _queue(transport: RecordingTransport, **kwargs) -> DeliveryQueue:
    kwargs.setdefault("backoff_base", 0.01)
    kwargs.setdefault("backoff_max", 0.05)
    return DeliveryQueue(transport=transport, rng=random.Random(1), **kwargs)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


class TestCapacity:
    async def test_rejects_when_full_without_blocking(self) -> None:
        gate = asyncio.Event()
        transport = RecordingTransport(gate=gate)
        queue = _queue(transport, capacity=3, concurrency=1)
        await queue.start()
        try:
            for i in range(3):
                queue.enqueue(make_report(name=f"pod-{i}"))
            with pytest.raises(QueueFullError):
                queue.enqueue(make_report(name="pod-overflow"))
            assert queue.pending == 3
        finally:
            gate.set()
            await queue.stop(grace=5.0)

        assert len(transport.sent) == 3

    async def test_pending_never_exceeds_capacity(self) -> None:
        gate = asyncio.Event()
        transport = RecordingTransport(gate=gate)
        queue = _queue(transport, capacity=5, concurrency=2)
        await queue.start()
        accepted = rejected = 0
        try:
            for i in range(50):
                try:
                    queue.enqueue(make_report(name=f"pod-{i}"))
                    accepted += 1
                except QueueFullError:
                    rejected += 1
                assert queue.pending <= queue.capacity
        finally:
            gate.set()
            await queue.stop(grace=5.0)

        assert accepted == 5
        assert rejected == 45

    async def test_not_accepting_before_start(self) -> None:
        queue = _queue(RecordingTransport())
        with pytest.raises(QueueFullError):
            queue.enqueue(make_report())

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            DeliveryQueue(transport=RecordingTransport(), capacity=0)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    async def test_success(self) -> None:
        transport = RecordingTransport()
        queue = _queue(transport)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()
        assert queue.delivered == 1
        assert queue.pending == 0

    async def test_transient_failure_is_retried(self) -> None:
        transport = RecordingTransport([TransientDeliveryError("503"), TransientDeliveryError("503"), None])
        queue = _queue(transport, max_attempts=5)
        await queue.start()
        try:
            task = queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert len(transport.calls) == 3
        assert len(transport.sent) == 1
        assert task.attempts == 3
        assert queue.delivered == 1
        assert queue.failed == 0

    async def test_retry_waits_at_least_base_delay(self) -> None:
        transport = RecordingTransport([TransientDeliveryError("503"), None])
        queue = _queue(transport, backoff_base=0.05, backoff_max=0.1)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert transport.call_times[1] - transport.call_times[0] >= 0.05

    async def test_retry_after_is_honoured(self) -> None:
        transport = RecordingTransport([TransientDeliveryError("429", retry_after=0.2), None])
        queue = _queue(transport)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert transport.call_times[1] - transport.call_times[0] >= 0.2

    async def test_permanent_failure_is_not_retried(self) -> None:
        transport = RecordingTransport([PermanentDeliveryError("400 bad request")])
        queue = _queue(transport)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert len(transport.calls) == 1
        assert queue.failed == 1
        assert queue.delivered == 0

    async def test_gives_up_after_max_attempts(self) -> None:
        transport = RecordingTransport([TransientDeliveryError("down") for _ in range(10)])
        queue = _queue(transport, max_attempts=3)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert len(transport.calls) == 3
        assert queue.failed == 1
        assert queue.pending == 0

    async def test_unexpected_transport_error_drops_report(self) -> None:
        transport = RecordingTransport([RuntimeError("bug")])
        queue = _queue(transport)
        await queue.start()
        try:
            queue.enqueue(make_report())
            assert await queue.drain(5.0)
        finally:
            await queue.stop()

        assert queue.failed == 1

    async def test_retrying_reports_count_against_capacity(self) -> None:
        transport = RecordingTransport([TransientDeliveryError("down", retry_after=10.0)])
        queue = _queue(transport, capacity=1)
        await queue.start()
        try:
            queue.enqueue(make_report())
            await wait_until(lambda: queue.retrying == 1)
            with pytest.raises(QueueFullError):
                queue.enqueue(make_report(name="other"))
        finally:
            abandoned = await queue.stop()

        assert abandoned == 1
        assert queue.lost == 1


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    async def test_stop_drains_within_grace(self) -> None:
        transport = RecordingTransport()
        queue = _queue(transport, concurrency=2)
        await queue.start()
        for i in range(10):
            queue.enqueue(make_report(name=f"pod-{i}"))

        abandoned = await queue.stop(grace=5.0)

        assert abandoned == 0
        assert len(transport.sent) == 10

    async def test_stop_abandons_after_grace(self) -> None:
        gate = asyncio.Event()
        transport = RecordingTransport(gate=gate)
        queue = _queue(transport, concurrency=1)
        await queue.start()
        for i in range(4):
            queue.enqueue(make_report(name=f"pod-{i}"))

        abandoned = await queue.stop(grace=0.05)

        assert abandoned == 4
        assert queue.lost == 4
        assert queue.pending == 0
        assert transport.sent == []

    async def test_drain_rejects_new_reports(self) -> None:
        queue = _queue(RecordingTransport())
        await queue.start()
        try:
            assert await queue.drain(1.0)
            with pytest.raises(QueueFullError):
                queue.enqueue(make_report())
        finally:
            await queue.stop()
