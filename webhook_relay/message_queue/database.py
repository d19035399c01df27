"""
Database-Backed Message Queue

Durable leased queue and dead letter store on the SQLAlchemy async engine.
Messages survive process restarts: a webhook acknowledged to its caller
stays in the table until the consumer acks it or it is redriven.
"""

import asyncio
import datetime as dt
import time
from typing import Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from webhook_relay.message_queue.base import (
    DeadLetterMessage,
    DeadLetterStore,
    MessageQueue,
    QueueMetrics,
    QueuePolicy,
    WebhookMessage,
)
from webhook_relay.message_queue.memory import MAX_BATCH_SIZE
from webhook_relay.repositories.tables import DeadLetterRow, QueuedMessageRow
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.observability import log_queue_event

_queue = QueuedMessageRow.__table__
_dead_letters = DeadLetterRow.__table__


def _aware(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=dt.UTC)


class SqlAlchemyDeadLetterStore(DeadLetterStore):
    """
    Dead letter store kept in the webhook_dead_letters table.

    Several stores can share the table; rows are scoped by store name.
    """

    def __init__(self, engine: AsyncEngine, name: str = "webhook-DLQ"):
        self.engine = engine
        self.name = name
        self._sources: Dict[str, "SqlAlchemyQueue"] = {}

    def register_source(self, queue: "SqlAlchemyQueue") -> None:
        self._sources[queue.name] = queue

    def insert_statement(self, message: DeadLetterMessage):
        """INSERT for message, for callers that redrive inside their own transaction."""
        return insert(_dead_letters).values(
            message_id=message.id,
            store_name=self.name,
            body=message.body,
            received_at=message.received_at,
            receive_count=message.receive_count,
            dead_lettered_at=message.dead_lettered_at,
            source_queue=message.source_queue,
        )

    async def add(self, message: DeadLetterMessage) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(self.insert_statement(message))

    async def list(self, limit: int = 100) -> List[DeadLetterMessage]:
        query = (
            select(_dead_letters)
            .where(_dead_letters.c.store_name == self.name)
            .order_by(_dead_letters.c.seq)
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            rows = (await conn.execute(query)).all()
        return [self._to_message(row) for row in rows]

    async def get(self, message_id: str) -> Optional[DeadLetterMessage]:
        query = select(_dead_letters).where(
            _dead_letters.c.store_name == self.name,
            _dead_letters.c.message_id == message_id,
        )
        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).first()
        return self._to_message(row) if row is not None else None

    async def count(self) -> int:
        query = (
            select(func.count())
            .select_from(_dead_letters)
            .where(_dead_letters.c.store_name == self.name)
        )
        async with self.engine.connect() as conn:
            return (await conn.execute(query)).scalar_one()

    async def redeliver(self, message_id: str) -> Optional[WebhookMessage]:
        """
        Move the message back to its source queue.

        Deleting the dead letter and queueing the message commit together.
        """
        dead = await self.get(message_id)
        if dead is None:
            return None

        queue = self._sources.get(dead.source_queue)
        if queue is None:
            raise LookupError(f"Source queue '{dead.source_queue}' is not registered with {self.name}")

        message = WebhookMessage(id=dead.id, body=dead.body, received_at=dead.received_at)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(self._remove_statement(message_id))
                if result.rowcount != 1:
                    # Redelivered or deleted concurrently
                    return None
                await conn.execute(queue.insert_statement(message))
        except IntegrityError as e:
            raise ValueError(f"Message {message.id} is already queued") from e

        queue.record_published(message)
        log_queue_event("redelivered", message.id, queue=queue.name, dead_letter_store=self.name)
        return message

    async def delete(self, message_id: str) -> bool:
        async with self.engine.begin() as conn:
            removed = (await conn.execute(self._remove_statement(message_id))).rowcount == 1
        if removed:
            log_queue_event("dead_letter_deleted", message_id, dead_letter_store=self.name)
        return removed

    def _remove_statement(self, message_id: str):
        return delete(_dead_letters).where(
            _dead_letters.c.store_name == self.name,
            _dead_letters.c.message_id == message_id,
        )

    @staticmethod
    def _to_message(row) -> DeadLetterMessage:
        return DeadLetterMessage(
            id=row.message_id,
            body=row.body,
            received_at=_aware(row.received_at),
            receive_count=row.receive_count,
            dead_lettered_at=_aware(row.dead_lettered_at),
            source_queue=row.source_queue,
        )


class SqlAlchemyQueue(MessageQueue):
    """
    Durable leased queue in the webhook_queue_messages table.

    A lease is a compare-and-set UPDATE on (id, receive_count), so two
    receivers, in this process or another, never lease the same delivery.
    On PostgreSQL candidate rows are also read FOR UPDATE SKIP LOCKED.
    Redrive deletes the queue row and inserts the dead letter in one
    transaction, which requires the dead letter target to live in the same
    database.

    Lease times come from a wall clock, so leases taken before a restart
    still expire afterwards. Long polls re-check every poll_interval seconds.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        policy: QueuePolicy,
        name: str = "webhook",
        clock: Callable[[], float] = time.time,
        poll_interval: float = 0.2,
    ):
        if not isinstance(policy.dead_letter_target, SqlAlchemyDeadLetterStore):
            raise TypeError("SqlAlchemyQueue needs a SqlAlchemyDeadLetterStore as its dead letter target")

        self.engine = engine
        self.name = name
        self.policy = policy
        self.poll_interval = poll_interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._published = 0
        self._acked = 0
        self._redriven = 0

        policy.dead_letter_target.register_source(self)

    def insert_statement(self, message: WebhookMessage):
        """INSERT queueing message as visible now, for use inside a caller's transaction."""
        return insert(_queue).values(
            id=message.id,
            queue_name=self.name,
            body=message.body,
            received_at=message.received_at,
            receive_count=0,
            visible_at=self._clock(),
        )

    def record_published(self, message: WebhookMessage) -> None:
        self._published += 1
        log_queue_event("published", message.id, queue=self.name, body_bytes=len(message.body))

    async def publish(self, message: WebhookMessage) -> str:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(self.insert_statement(message))
        except IntegrityError as e:
            raise ValueError(f"Message {message.id} is already queued") from e

        self.record_published(message)
        return message.id

    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: float = 0.0,
    ) -> List[WebhookMessage]:
        if not 1 <= max_messages <= MAX_BATCH_SIZE:
            raise ValueError(f"max_messages must be between 1 and {MAX_BATCH_SIZE}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds

        while True:
            batch = await self._lease_visible(max_messages)
            remaining = deadline - loop.time()
            if batch or remaining <= 0:
                return batch
            await asyncio.sleep(min(remaining, self.poll_interval))

    async def _lease_visible(self, max_messages: int) -> List[WebhookMessage]:
        """Lease visible rows and redrive exhausted ones in one transaction."""
        dead_letter_target = self.policy.dead_letter_target
        batch: List[WebhookMessage] = []
        redriven: List[DeadLetterMessage] = []

        async with self._lock:
            now = self._clock()
            async with self.engine.begin() as conn:
                while len(batch) < max_messages:
                    query = (
                        select(_queue)
                        .where(_queue.c.queue_name == self.name, _queue.c.visible_at <= now)
                        .order_by(_queue.c.visible_at, _queue.c.received_at)
                        .limit(max_messages - len(batch))
                        .with_for_update(skip_locked=True)
                    )
                    rows = (await conn.execute(query)).all()
                    if not rows:
                        break

                    for row in rows:
                        claimed = (_queue.c.id == row.id, _queue.c.receive_count == row.receive_count)
                        receive_count = row.receive_count + 1

                        if receive_count > self.policy.max_receive_count:
                            result = await conn.execute(delete(_queue).where(*claimed))
                            if result.rowcount != 1:
                                continue
                            dead = DeadLetterMessage(
                                id=row.id,
                                body=row.body,
                                received_at=_aware(row.received_at),
                                receive_count=receive_count,
                                source_queue=self.name,
                            )
                            await conn.execute(dead_letter_target.insert_statement(dead))
                            redriven.append(dead)
                            continue

                        result = await conn.execute(
                            update(_queue)
                            .where(*claimed)
                            .values(
                                receive_count=receive_count,
                                visible_at=now + self.policy.visibility_timeout,
                            )
                        )
                        if result.rowcount == 1:
                            batch.append(WebhookMessage(
                                id=row.id,
                                body=row.body,
                                received_at=_aware(row.received_at),
                                receive_count=receive_count,
                            ))

        for dead in redriven:
            self._redriven += 1
            metrics.messages_redriven.inc()
            log_queue_event(
                "dead_lettered",
                dead.id,
                level="WARNING",
                queue=self.name,
                receive_count=dead.receive_count,
                dead_letter_store=dead_letter_target.name,
            )

        if batch:
            logger.debug(
                f"Leased {len(batch)} message(s) from {self.name}",
                extra={"message_ids": [m.id for m in batch]}
            )
        return batch

    async def ack(self, message_id: str) -> bool:
        statement = delete(_queue).where(_queue.c.queue_name == self.name, _queue.c.id == message_id)
        async with self.engine.begin() as conn:
            removed = (await conn.execute(statement)).rowcount == 1

        if removed:
            self._acked += 1
            log_queue_event("acked", message_id, queue=self.name)
        else:
            logger.debug(f"Ack for unknown message {message_id} ignored")
        return removed

    async def change_visibility(self, message_id: str, timeout: float) -> bool:
        if timeout < 0:
            raise ValueError("Visibility timeout cannot be negative")

        statement = (
            update(_queue)
            .where(_queue.c.queue_name == self.name, _queue.c.id == message_id)
            .values(visible_at=self._clock() + timeout)
        )
        async with self.engine.begin() as conn:
            return (await conn.execute(statement)).rowcount == 1

    async def get_metrics(self) -> QueueMetrics:
        """
        Depths come from the table; published, acked and redriven count
        what this process has done since it started.
        """
        now = self._clock()
        in_queue = _queue.c.queue_name == self.name
        async with self.engine.connect() as conn:
            total = (await conn.execute(
                select(func.count()).select_from(_queue).where(in_queue)
            )).scalar_one()
            visible = (await conn.execute(
                select(func.count()).select_from(_queue).where(in_queue, _queue.c.visible_at <= now)
            )).scalar_one()

        return QueueMetrics(
            visible=visible,
            in_flight=total - visible,
            dead_letter=await self.policy.dead_letter_target.count(),
            published=self._published,
            acked=self._acked,
            redriven=self._redriven,
        )
