"""
Tests for QueueWorker.
"""

import pytest
import asyncio
from unittest.mock import AsyncMock

from webhook_relay.message_queue import InMemoryQueue, QueueWorker, WebhookMessage


async def stop_worker(worker: QueueWorker, worker_task: asyncio.Task) -> None:
    await worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass


class TestQueueWorker:
    """Test suite for QueueWorker."""

    @pytest.fixture
    def queue(self, policy):
        """Real-clock queue so the background loop behaves as in production."""
        return InMemoryQueue(policy=policy)

    @pytest.fixture
    def sample_message(self):
        return WebhookMessage(id="msg-123", body=b'{"event":"ping"}')

    @pytest.mark.asyncio
    async def test_worker_processes_message(self, queue, sample_message):
        """Worker hands each received message to the handler."""
        handler_called = asyncio.Event()
        processed = []

        async def test_handler(message: WebhookMessage) -> bool:
            processed.append(message)
            await queue.ack(message.id)
            handler_called.set()
            return True

        worker = QueueWorker(queue=queue, handler=test_handler, poll_interval=0.05)
        await queue.publish(sample_message)
        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.wait_for(handler_called.wait(), timeout=2.0)

            assert processed[0].id == "msg-123"
            assert processed[0].receive_count == 1

            metrics = await queue.get_metrics()
            assert metrics.acked == 1

        finally:
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_worker_does_not_ack_on_its_own(self, queue, sample_message):
        """Messages the handler leaves unacked stay leased."""
        handler = AsyncMock(return_value=False)
        worker = QueueWorker(queue=queue, handler=handler, poll_interval=0.05)
        await queue.publish(sample_message)
        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.sleep(0.3)

            handler.assert_awaited_once()
            metrics = await queue.get_metrics()
            assert metrics.acked == 0
            assert metrics.in_flight == 1

        finally:
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_worker_survives_handler_exception(self, queue):
        """A raising handler does not stop the loop."""
        calls = []

        async def flaky_handler(message: WebhookMessage) -> bool:
            calls.append(message.id)
            if message.id == "bad":
                raise ValueError("Intentional failure")
            await queue.ack(message.id)
            return True

        worker = QueueWorker(queue=queue, handler=flaky_handler, poll_interval=0.05, batch_size=1)
        await queue.publish(WebhookMessage(id="bad", body=b"{}"))
        await queue.publish(WebhookMessage(id="good", body=b"{}"))
        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.sleep(0.4)

            assert set(calls) == {"bad", "good"}
            metrics = await queue.get_metrics()
            assert metrics.acked == 1
            assert metrics.in_flight == 1

        finally:
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_worker_respects_max_concurrent(self, queue):
        """Never more than max_concurrent handlers in flight."""
        processing_count = 0
        max_seen = 0
        lock = asyncio.Lock()

        async def slow_handler(message: WebhookMessage) -> bool:
            nonlocal processing_count, max_seen

            async with lock:
                processing_count += 1
                max_seen = max(max_seen, processing_count)

            await asyncio.sleep(0.1)

            async with lock:
                processing_count -= 1
            await queue.ack(message.id)
            return True

        worker = QueueWorker(queue=queue, handler=slow_handler, max_concurrent=2, poll_interval=0.01)

        for i in range(5):
            await queue.publish(WebhookMessage(id=f"msg-{i}", body=b"{}"))

        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.sleep(1.0)

            assert max_seen <= 2
            metrics = await queue.get_metrics()
            assert metrics.acked == 5

        finally:
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_worker_leases_only_what_it_can_run(self, queue):
        """A saturated worker leaves the remaining messages visible."""
        release = asyncio.Event()

        async def blocking_handler(message: WebhookMessage) -> bool:
            await release.wait()
            return True

        worker = QueueWorker(queue=queue, handler=blocking_handler, max_concurrent=2, poll_interval=0.01)
        for i in range(5):
            await queue.publish(WebhookMessage(id=f"msg-{i}", body=b"{}"))

        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.sleep(0.2)

            metrics = await queue.get_metrics()
            assert metrics.in_flight == 2
            assert metrics.visible == 3

        finally:
            release.set()
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_worker_retries_after_receive_failure(self, sample_message):
        """Receive errors are logged and the loop keeps polling."""
        queue = AsyncMock()
        queue.name = "broken"
        queue.receive = AsyncMock(side_effect=[RuntimeError("queue down"), [sample_message], []])
        handled = asyncio.Event()

        async def handler(message: WebhookMessage) -> bool:
            handled.set()
            return True

        worker = QueueWorker(queue=queue, handler=handler, poll_interval=0.01)
        worker_task = asyncio.create_task(worker.start())

        try:
            await asyncio.wait_for(handled.wait(), timeout=2.0)
        finally:
            worker.queue.receive = AsyncMock(return_value=[])
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_run_once(self, queue):
        handler = AsyncMock(return_value=True)
        worker = QueueWorker(queue=queue, handler=handler, batch_size=10)
        for i in range(3):
            await queue.publish(WebhookMessage(id=f"msg-{i}", body=b"{}"))

        handled = await worker.run_once()

        assert handled == 3
        assert handler.await_count == 3
        assert await worker.run_once() == 0

    @pytest.mark.asyncio
    async def test_worker_graceful_shutdown(self, queue):
        """Stop waits for in-flight handlers to finish."""
        finished = []

        async def handler(message: WebhookMessage) -> bool:
            await asyncio.sleep(0.1)
            finished.append(message.id)
            return True

        worker = QueueWorker(queue=queue, handler=handler, poll_interval=0.01)
        await queue.publish(WebhookMessage(id="msg-1", body=b"{}"))
        worker_task = asyncio.create_task(worker.start())

        await asyncio.sleep(0.05)
        await worker.stop()

        assert finished == ["msg-1"]
        assert not worker.running

        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

    @pytest.mark.asyncio
    async def test_shutdown_timeout_cancels_handlers(self, queue):
        """Handlers still running after the timeout are cancelled, message stays leased."""
        started = asyncio.Event()

        async def hanging_handler(message: WebhookMessage) -> bool:
            started.set()
            await asyncio.sleep(10)
            return True

        worker = QueueWorker(
            queue=queue, handler=hanging_handler, poll_interval=0.01, shutdown_timeout=0.1
        )
        await queue.publish(WebhookMessage(id="msg-1", body=b"{}"))
        worker_task = asyncio.create_task(worker.start())

        await asyncio.wait_for(started.wait(), timeout=2.0)
        await stop_worker(worker, worker_task)
        await asyncio.sleep(0)

        metrics = await queue.get_metrics()
        assert metrics.in_flight == 1
        assert metrics.acked == 0

    @pytest.mark.asyncio
    async def test_start_twice_is_ignored(self, queue):
        worker = QueueWorker(queue=queue, handler=AsyncMock(), poll_interval=0.01)
        worker_task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.02)

        try:
            await asyncio.wait_for(worker.start(), timeout=1.0)
        finally:
            await stop_worker(worker, worker_task)

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_poll(self, queue):
        """Stopping mid long poll leases nothing and ends the loop promptly."""
        handler = AsyncMock(return_value=True)
        worker = QueueWorker(queue=queue, handler=handler, wait_seconds=5.0, poll_interval=0.01)
        worker_task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)

        await asyncio.wait_for(worker.stop(), timeout=1.0)
        await asyncio.sleep(0)

        assert worker_task.done()
        assert not worker_task.cancelled()

        await queue.publish(WebhookMessage(id="after-stop", body=b"{}"))
        [message] = await queue.receive()
        assert message.receive_count == 1
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_awaits_cancelled_handlers(self, queue):
        """Handlers cancelled at the shutdown timeout have finished when stop() returns."""
        started = asyncio.Event()
        cancelled = []

        async def hanging_handler(message: WebhookMessage) -> bool:
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(message.id)
                raise
            return True

        worker = QueueWorker(
            queue=queue, handler=hanging_handler, poll_interval=0.01, shutdown_timeout=0.05
        )
        await queue.publish(WebhookMessage(id="msg-1", body=b"{}"))
        worker_task = asyncio.create_task(worker.start())
        await asyncio.wait_for(started.wait(), timeout=2.0)

        await worker.stop()

        assert cancelled == ["msg-1"]
        assert worker.in_flight == 0
        await worker_task
