"""
In-Memory Message Queue

Leased queue and dead letter store kept in process memory.
Uses asyncio primitives so every mutation is atomic for concurrent callers.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from loguru import logger

from webhook_relay.message_queue.base import (
    DeadLetterMessage,
    DeadLetterStore,
    MessageQueue,
    QueueMetrics,
    QueuePolicy,
    WebhookMessage,
)
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.observability import log_queue_event

MAX_BATCH_SIZE = 10


@dataclass
class _Lease:
    """Queue-owned message plus the clock reading at which it is visible."""
    message: WebhookMessage
    visible_at: float


class InMemoryDeadLetterStore(DeadLetterStore):
    """
    Dead letter store backed by an insertion-ordered dict.

    Replay goes back to the queue the message was redriven from, which
    registers itself here when it is created with this store as its target.
    """

    def __init__(self, name: str = "webhook-DLQ"):
        self.name = name
        self._messages: Dict[str, DeadLetterMessage] = {}
        self._sources: Dict[str, MessageQueue] = {}
        self._lock = asyncio.Lock()

    def register_source(self, queue: MessageQueue) -> None:
        self._sources[queue.name] = queue

    async def add(self, message: DeadLetterMessage) -> None:
        async with self._lock:
            self._messages[message.id] = message

    async def list(self, limit: int = 100) -> List[DeadLetterMessage]:
        async with self._lock:
            return list(self._messages.values())[:limit]

    async def get(self, message_id: str) -> Optional[DeadLetterMessage]:
        async with self._lock:
            return self._messages.get(message_id)

    async def count(self) -> int:
        async with self._lock:
            return len(self._messages)

    async def redeliver(self, message_id: str) -> Optional[WebhookMessage]:
        async with self._lock:
            dead = self._messages.pop(message_id, None)
        if dead is None:
            return None

        queue = self._sources.get(dead.source_queue)
        if queue is None:
            async with self._lock:
                self._messages[dead.id] = dead
            raise LookupError(f"Source queue '{dead.source_queue}' is not registered with {self.name}")

        message = WebhookMessage(id=dead.id, body=dead.body, received_at=dead.received_at)
        try:
            await queue.publish(message)
        except Exception:
            async with self._lock:
                self._messages[dead.id] = dead
            raise

        log_queue_event("redelivered", message.id, queue=queue.name, dead_letter_store=self.name)
        return message

    async def delete(self, message_id: str) -> bool:
        async with self._lock:
            removed = self._messages.pop(message_id, None) is not None
        if removed:
            log_queue_event("dead_letter_deleted", message_id, dead_letter_store=self.name)
        return removed


class InMemoryQueue(MessageQueue):
    """
    In-memory leased queue implementation.

    Lease expiry is evaluated lazily on every receive against an injectable
    monotonic clock; there is no background timer.

    Suitable for:
    - Testing
    - Single-instance deployments

    Not suitable for:
    - Multi-instance deployments
    - Surviving process restarts
    """

    def __init__(
        self,
        policy: QueuePolicy,
        name: str = "webhook",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize in-memory queue.

        Args:
            policy: Visibility and redrive policy
            name: Queue name, used by the dead letter store for replay
            clock: Monotonic seconds source for lease bookkeeping
        """
        self.name = name
        self.policy = policy
        self._clock = clock
        self._leases: Dict[str, _Lease] = {}
        self._lock = asyncio.Lock()
        self._available = asyncio.Condition(self._lock)
        self._published = 0
        self._acked = 0
        self._redriven = 0

        policy.dead_letter_target.register_source(self)

    async def publish(self, message: WebhookMessage) -> str:
        async with self._available:
            if message.id in self._leases:
                raise ValueError(f"Message {message.id} is already queued")

            stored = message.model_copy(update={"receive_count": 0})
            self._leases[stored.id] = _Lease(message=stored, visible_at=self._clock())
            self._published += 1
            self._available.notify_all()

        log_queue_event("published", stored.id, queue=self.name, body_bytes=len(stored.body))
        return stored.id

    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: float = 0.0,
    ) -> List[WebhookMessage]:
        if not 1 <= max_messages <= MAX_BATCH_SIZE:
            raise ValueError(f"max_messages must be between 1 and {MAX_BATCH_SIZE}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds

        async with self._available:
            while True:
                batch = await self._lease_visible(max_messages)
                remaining = deadline - loop.time()
                if batch or remaining <= 0:
                    return batch

                # Expiring leases do not notify, so wake up no later than the next expiry
                next_expiry = self._seconds_until_next_expiry()
                if next_expiry is not None:
                    remaining = min(remaining, max(next_expiry, 0.01))
                try:
                    await asyncio.wait_for(self._available.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass

    async def _lease_visible(self, max_messages: int) -> List[WebhookMessage]:
        """
        Lease visible messages and redrive exhausted ones.

        Must be called while holding the lock.
        """
        now = self._clock()
        batch: List[WebhookMessage] = []

        for message_id, lease in list(self._leases.items()):
            if len(batch) >= max_messages:
                break
            if lease.visible_at > now:
                continue

            lease.message.receive_count += 1

            if lease.message.receive_count > self.policy.max_receive_count:
                del self._leases[message_id]
                await self.policy.dead_letter_target.add(
                    DeadLetterMessage.from_message(lease.message, source_queue=self.name)
                )
                self._redriven += 1
                metrics.messages_redriven.inc()
                log_queue_event(
                    "dead_lettered",
                    message_id,
                    level="WARNING",
                    queue=self.name,
                    receive_count=lease.message.receive_count,
                    dead_letter_store=self.policy.dead_letter_target.name,
                )
                continue

            lease.visible_at = now + self.policy.visibility_timeout
            batch.append(lease.message.model_copy())

        if batch:
            logger.debug(
                f"Leased {len(batch)} message(s) from {self.name}",
                extra={"message_ids": [m.id for m in batch]}
            )
        return batch

    def _seconds_until_next_expiry(self) -> Optional[float]:
        now = self._clock()
        pending = [lease.visible_at - now for lease in self._leases.values() if lease.visible_at > now]
        return min(pending) if pending else None

    async def ack(self, message_id: str) -> bool:
        async with self._lock:
            removed = self._leases.pop(message_id, None) is not None
            if removed:
                self._acked += 1

        if removed:
            log_queue_event("acked", message_id, queue=self.name)
        else:
            logger.debug(f"Ack for unknown message {message_id} ignored")
        return removed

    async def change_visibility(self, message_id: str, timeout: float) -> bool:
        if timeout < 0:
            raise ValueError("Visibility timeout cannot be negative")

        async with self._available:
            lease = self._leases.get(message_id)
            if lease is None:
                return False
            lease.visible_at = self._clock() + timeout
            if timeout == 0:
                self._available.notify_all()
            return True

    async def get_metrics(self) -> QueueMetrics:
        async with self._lock:
            now = self._clock()
            visible = sum(1 for lease in self._leases.values() if lease.visible_at <= now)
            queue_metrics = QueueMetrics(
                visible=visible,
                in_flight=len(self._leases) - visible,
                published=self._published,
                acked=self._acked,
                redriven=self._redriven,
            )

        queue_metrics.dead_letter = await self.policy.dead_letter_target.count()
        return queue_metrics
