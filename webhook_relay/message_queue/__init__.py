"""
Message Queue System

Leased, at-least-once webhook queue with:
- Abstract queue and dead letter store interfaces
- Database-backed implementations that survive restarts
- In-memory implementations for tests and single-instance deployments
- Visibility timeouts as the only retry mechanism
- Automatic redrive of poison messages to the dead letter store
- Background worker that drains the queue into a handler
"""

from webhook_relay.message_queue.base import (
    MessageQueue,
    DeadLetterStore,
    WebhookMessage,
    DeadLetterMessage,
    QueuePolicy,
    QueueMetrics,
    build_queue_policy,
)
from webhook_relay.message_queue.memory import InMemoryQueue, InMemoryDeadLetterStore
from webhook_relay.message_queue.database import SqlAlchemyQueue, SqlAlchemyDeadLetterStore
from webhook_relay.message_queue.worker import QueueWorker

__all__ = [
    "MessageQueue",
    "DeadLetterStore",
    "WebhookMessage",
    "DeadLetterMessage",
    "QueuePolicy",
    "QueueMetrics",
    "build_queue_policy",
    "InMemoryQueue",
    "InMemoryDeadLetterStore",
    "SqlAlchemyQueue",
    "SqlAlchemyDeadLetterStore",
    "QueueWorker",
]
