import datetime as dt
import hashlib
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict, field_serializer

from webhook_relay.message_queue.base import WebhookMessage
from webhook_relay.utils.payload import canonicalize, parse_payload

EVENT_TYPE_KEYS = ("event", "type")


class PersistedRecord(BaseModel):
    """
    The durable row written to the database sink for one webhook.

    record_key is the SHA-256 of the canonical payload, so the same body
    always maps to the same row no matter how many times it is delivered.
    """
    model_config = ConfigDict(frozen=True)

    record_key: str = Field(..., min_length=64, max_length=64)
    message_id: str
    payload: str
    event_type: Optional[str] = None
    received_at: dt.datetime

    @field_serializer("received_at")
    def serialize_dt(self, value: dt.datetime):
        return value.isoformat()

    @classmethod
    def from_message(cls, message: WebhookMessage) -> "PersistedRecord":
        """
        Derive the record from a queued message body.

        Raises:
            MalformedPayloadError: The body is not valid JSON
        """
        document = parse_payload(message.body)
        payload = canonicalize(document)
        return cls(
            record_key=hashlib.sha256(payload.encode("utf-8")).hexdigest(),
            message_id=message.id,
            payload=payload,
            event_type=_event_type(document),
            received_at=message.received_at,
        )


def _event_type(document: Any) -> Optional[str]:
    if not isinstance(document, dict):
        return None
    for key in EVENT_TYPE_KEYS:
        value = document.get(key)
        if isinstance(value, str) and value:
            return value[:100]
    return None
