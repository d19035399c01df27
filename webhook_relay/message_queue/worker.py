"""
Queue Worker

Background worker that drains the webhook queue into a message handler.
"""

import asyncio
from typing import Awaitable, Callable, List
from loguru import logger

from webhook_relay.message_queue.base import MessageQueue, WebhookMessage


class QueueWorker:
    """
    Background worker for processing queued messages.

    Continuously receives batches from the queue and runs the handler once
    per message, each in its own task. The worker never acks: the handler
    owns acknowledgment, and anything it leaves unacked is redelivered by
    the queue once the lease expires.

    Attributes:
        queue: Message queue to drain
        handler: Async function invoked once per received message
        max_concurrent: Maximum number of in-flight handler invocations
        poll_interval: Seconds to wait after an empty receive
        batch_size: Maximum messages per receive call
        wait_seconds: Long-poll duration passed to receive
        shutdown_timeout: Seconds stop() waits for in-flight handlers
    """

    def __init__(
        self,
        queue: MessageQueue,
        handler: Callable[[WebhookMessage], Awaitable[bool]],
        max_concurrent: int = 10,
        poll_interval: float = 1.0,
        batch_size: int = 10,
        wait_seconds: float = 0.0,
        shutdown_timeout: float = 30.0,
    ):
        self.queue = queue
        self.handler = handler
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.shutdown_timeout = shutdown_timeout
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._stopping = asyncio.Event()
        self._loop_exited = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """
        Start the worker.

        Runs until stop() is called. Receive failures are logged and retried
        after poll_interval.
        """
        if self._running:
            logger.warning("Worker already running")
            return

        self._running = True
        self._stopping.clear()
        self._loop_exited.clear()
        logger.info(
            f"Queue worker started on '{self.queue.name}' (max_concurrent={self.max_concurrent}, "
            f"batch_size={self.batch_size}, poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                free_slots = self.max_concurrent - len(self._tasks)
                if free_slots <= 0:
                    # Leasing more than we can run would burn visibility time
                    await self._until_stopping(*self._tasks)
                    continue

                try:
                    messages = await self._receive(min(self.batch_size, free_slots))
                except Exception as e:
                    logger.error(f"Receive from '{self.queue.name}' failed: {e}", exc_info=True)
                    await self._pause(self.poll_interval)
                    continue

                if messages:
                    # Already leased, so they are handled even when stopping
                    self._dispatch(messages)
                elif self._running:
                    await self._pause(self.poll_interval)

        finally:
            self._loop_exited.set()
            logger.info("Queue worker stopped")

    async def stop(self) -> None:
        """
        Stop the worker.

        Gracefully shuts down:
        1. Interrupts a pending long poll; a batch that was already leased is
           still dispatched
        2. Waits for in-flight handlers to complete
        3. Cancels and awaits whatever is left; those messages reappear after
           their lease
        """
        if not self._running:
            return

        logger.info("Stopping queue worker...")
        self._running = False
        self._stopping.set()
        await self._loop_exited.wait()

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} tasks to complete...")
            _, pending = await asyncio.wait(set(self._tasks), timeout=self.shutdown_timeout)
            if pending:
                logger.warning(f"Timeout waiting for tasks, cancelling {len(pending)} remaining")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

    async def _receive(self, max_messages: int) -> List[WebhookMessage]:
        """Receive a batch, abandoning the long poll if stop() is called."""
        receive = asyncio.create_task(
            self.queue.receive(max_messages=max_messages, wait_seconds=self.wait_seconds)
        )
        try:
            await self._until_stopping(receive)
        finally:
            if not receive.done():
                receive.cancel()
                await asyncio.gather(receive, return_exceptions=True)

        if receive.cancelled():
            return []
        return receive.result()

    async def _until_stopping(self, *futures: asyncio.Future) -> None:
        """Wait until any of futures completes or stop() is called."""
        stopping = asyncio.create_task(self._stopping.wait())
        try:
            await asyncio.wait({*futures, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_once(self) -> int:
        """
        Receive a single batch and process it to completion.

        Returns:
            Number of messages handled
        """
        messages = await self.queue.receive(max_messages=self.batch_size)
        tasks = self._dispatch(messages)
        if tasks:
            await asyncio.gather(*tasks)
        return len(messages)

    def _dispatch(self, messages: List[WebhookMessage]) -> List[asyncio.Task]:
        tasks = []
        for message in messages:
            task = asyncio.create_task(self._process_message(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def _process_message(self, message: WebhookMessage) -> None:
        """
        Run the handler for one message with concurrency control.

        Args:
            message: Message to process
        """
        async with self._semaphore:
            logger.debug(f"Processing message {message.id} (receive {message.receive_count})")
            try:
                await self.handler(message)
            except Exception as e:
                # Unacked, so the lease expiry redelivers it
                logger.error(
                    f"Handler raised for message {message.id}: {e}",
                    extra={"message_id": message.id, "receive_count": message.receive_count},
                    exc_info=True
                )
