"""
Base Queue Interface

Abstract interfaces for the leased webhook queue and its dead letter store,
plus the message and policy models they share.
"""

import datetime as dt
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class WebhookMessage(BaseModel):
    """
    Message in the webhook queue.

    Attributes:
        id: Unique message identifier
        body: Raw payload bytes (canonical JSON when published by the ingress)
        received_at: When the ingress accepted the webhook
        receive_count: Times the message has been handed to a receiver
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    body: bytes
    received_at: dt.datetime = Field(default_factory=_utcnow)
    receive_count: int = Field(default=0, ge=0)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class DeadLetterMessage(WebhookMessage):
    """
    A webhook message frozen at the moment it exhausted its receive budget.

    Attributes:
        dead_lettered_at: When the redrive happened
        source_queue: Name of the queue it was redriven from
    """
    model_config = ConfigDict(frozen=True)

    dead_lettered_at: dt.datetime = Field(default_factory=_utcnow)
    source_queue: str

    @classmethod
    def from_message(cls, message: WebhookMessage, source_queue: str) -> "DeadLetterMessage":
        return cls(
            id=message.id,
            body=message.body,
            received_at=message.received_at,
            receive_count=message.receive_count,
            source_queue=source_queue,
        )


class QueueMetrics(BaseModel):
    """
    Queue statistics.

    Attributes:
        visible: Messages waiting to be received
        in_flight: Messages received and still leased
        dead_letter: Messages held in the dead letter store
        published: Total messages published
        acked: Total messages acknowledged
        redriven: Total messages moved to the dead letter store
    """
    visible: int = 0
    in_flight: int = 0
    dead_letter: int = 0
    published: int = 0
    acked: int = 0
    redriven: int = 0


class DeadLetterStore(ABC):
    """
    Terminal store for messages that exceeded their queue's receive budget.

    Nothing consumes from it automatically; operators list, replay or
    delete entries.
    """

    name: str

    @abstractmethod
    def register_source(self, queue: "MessageQueue") -> None:
        """Record a queue that redrives into this store, for replay."""
        pass

    @abstractmethod
    async def add(self, message: DeadLetterMessage) -> None:
        """Store a redriven message. Called only by queue redrive."""
        pass

    @abstractmethod
    async def list(self, limit: int = 100) -> List[DeadLetterMessage]:
        """
        Get dead lettered messages, oldest first.

        Args:
            limit: Maximum messages to return
        """
        pass

    @abstractmethod
    async def get(self, message_id: str) -> Optional[DeadLetterMessage]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def redeliver(self, message_id: str) -> Optional[WebhookMessage]:
        """
        Re-inject a dead lettered message into its source queue.

        The message keeps its id and starts over with receive_count 0.

        Returns:
            The re-published message, or None if the id is unknown
        """
        pass

    @abstractmethod
    async def delete(self, message_id: str) -> bool:
        """Discard a dead lettered message. Returns False if unknown."""
        pass


class QueuePolicy(BaseModel):
    """
    Immutable visibility and redrive configuration, fixed at queue creation.

    Attributes:
        visibility_timeout: Seconds a received message stays invisible
        max_receive_count: Receives allowed before redrive to the DLQ
        dead_letter_target: Store that receives exhausted messages
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    visibility_timeout: float = Field(gt=0)
    max_receive_count: int = Field(ge=1)
    dead_letter_target: DeadLetterStore

    def to_redrive_policy(self) -> dict:
        """Render the SQS-style redrive policy document."""
        return {
            "deadLetterTargetArn": self.dead_letter_target.name,
            "maxReceiveCount": self.max_receive_count,
        }


def build_queue_policy(settings, dead_letter_target: DeadLetterStore) -> QueuePolicy:
    """Create the queue policy from settings during application setup."""
    return QueuePolicy(
        visibility_timeout=settings.visibility_timeout_seconds,
        max_receive_count=settings.max_receive_count,
        dead_letter_target=dead_letter_target,
    )


class MessageQueue(ABC):
    """
    Abstract at-least-once webhook queue with visibility leasing.

    Implementations must provide:
    - Publish: Store a message, visible immediately
    - Receive: Lease visible messages, redriving exhausted ones to the DLQ
    - Ack: Remove a message permanently (idempotent)
    - Change visibility: Adjust an in-flight lease
    - Metrics: Get current queue statistics
    """

    name: str
    policy: QueuePolicy

    @abstractmethod
    async def publish(self, message: WebhookMessage) -> str:
        """
        Store a message with receive_count reset to 0.

        Args:
            message: Message to publish

        Returns:
            Message ID
        """
        pass

    @abstractmethod
    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: float = 0.0,
    ) -> List[WebhookMessage]:
        """
        Lease up to max_messages visible messages.

        Each returned message has its receive_count incremented and is hidden
        from other receivers for the policy's visibility timeout. Messages
        whose count would exceed max_receive_count are moved to the dead
        letter store instead of being returned.

        Args:
            max_messages: Batch size (1-10)
            wait_seconds: Long-poll duration when nothing is visible

        Returns:
            Snapshots of the leased messages (possibly empty)
        """
        pass

    @abstractmethod
    async def ack(self, message_id: str) -> bool:
        """
        Permanently remove a message.

        Unknown or already removed ids are a no-op.

        Returns:
            True if a message was removed
        """
        pass

    @abstractmethod
    async def change_visibility(self, message_id: str, timeout: float) -> bool:
        """
        Reset a message's lease to expire timeout seconds from now.

        Returns:
            True if the message exists
        """
        pass

    @abstractmethod
    async def get_metrics(self) -> QueueMetrics:
        pass
