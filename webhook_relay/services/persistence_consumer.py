"""
Persistence Consumer

Turns one received webhook message into one database sink write and acks it.
Failures never leave this boundary: an unacked message is redelivered by the
queue after its lease expires, and dead lettered once its receive budget runs out.
"""

from loguru import logger

from webhook_relay.core.exceptions import MalformedPayloadError, SinkConnectionError, WriteError
from webhook_relay.message_queue.base import MessageQueue, WebhookMessage
from webhook_relay.models.record import PersistedRecord
from webhook_relay.repositories.base import DatabaseSink
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.observability import log_queue_event


class PersistenceConsumer:
    """
    Stateless per-message handler for the queue worker.

    Usage:
        consumer = PersistenceConsumer(queue=queue, sink=sink)
        worker = QueueWorker(queue=queue, handler=consumer.handle)
    """

    def __init__(self, queue: MessageQueue, sink: DatabaseSink):
        self.queue = queue
        self.sink = sink

    async def handle(self, message: WebhookMessage) -> bool:
        """
        Persist and acknowledge a single message.

        Args:
            message: Message leased from the queue

        Returns:
            True if the message was persisted and acked
        """
        context = {"message_id": message.id, "receive_count": message.receive_count}

        try:
            record = PersistedRecord.from_message(message)

            with metrics.persist_duration.time():
                async with self.sink.connection() as conn:
                    result = await conn.execute(record)

        except MalformedPayloadError as e:
            # Will keep failing until the receive budget sends it to the DLQ
            return self._failed(message, "malformed_payload", e, context)
        except SinkConnectionError as e:
            return self._failed(message, "connection_error", e, context)
        except WriteError as e:
            return self._failed(message, "write_error", e, context)
        except Exception as e:
            logger.exception(f"Unexpected failure persisting message {message.id}")
            return self._failed(message, "unexpected", e, context)

        try:
            await self.queue.ack(message.id)
        except Exception as e:
            # Row is already written; redelivery will hit the duplicate path
            return self._failed(message, "ack_error", e, context)

        outcome = "inserted" if result.inserted else "duplicate"
        metrics.messages_persisted.inc(result=outcome)
        log_queue_event(
            "persisted",
            message.id,
            record_key=record.record_key,
            webhook_event=record.event_type,
            outcome=outcome,
            receive_count=message.receive_count,
        )
        return True

    def _failed(self, message: WebhookMessage, error_type: str, error: Exception, context: dict) -> bool:
        metrics.consumer_failures.inc(error=error_type)
        logger.bind(**context, error_type=error_type).warning(
            f"Message {message.id} not acked ({error_type}): {error}"
        )
        return False
