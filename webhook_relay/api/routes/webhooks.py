"""
Webhook Ingress Endpoint

Accepts webhook calls, decodes and validates the JSON body, and publishes
the canonical document to the webhook queue.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import Response
from loguru import logger

from webhook_relay.api.dependencies import get_queue
from webhook_relay.config import settings
from webhook_relay.core.exceptions import PayloadTooLargeError, PublishError
from webhook_relay.message_queue.base import MessageQueue, WebhookMessage
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.payload import decode_webhook_body

router = APIRouter(tags=["Webhooks"])


@router.post("/message")
async def ingest_message(
    request: Request,
    queue: MessageQueue = Depends(get_queue),
    x_body_encoding: Optional[str] = Header(None),
):
    """
    Webhook ingress endpoint.

    Flow:
    1. Reject oversized bodies (413)
    2. Undo the transport encoding, base64 or identity (400 on failure)
    3. Parse the JSON document (400 on failure)
    4. Publish the canonical re-serialization to the queue (502 on failure)
    5. Echo the canonical document back with 200

    Request format: raw body, optionally base64-encoded. The X-Body-Encoding
    header forces "base64" or "identity"; without it the encoding is detected.
    Response format: the exact JSON text that was enqueued, plus the new
    message id in the X-Message-Id header.

    Note:
        Persistence happens later in the queue worker. The caller must retry
        on 502; this endpoint never retries a publish itself.
    """
    with metrics.ingress_duration.time():
        raw = await request.body()
        if len(raw) > settings.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Body is {len(raw)} bytes, limit is {settings.max_payload_bytes}"
            )

        canonical = decode_webhook_body(raw, x_body_encoding)

        try:
            message_id = await queue.publish(WebhookMessage(body=canonical.encode("utf-8")))
        except Exception as e:
            raise PublishError(f"Webhook queue unavailable: {e}") from e

    metrics.ingress_requests.inc(outcome="published")
    logger.info(
        "Webhook accepted",
        extra={"message_id": message_id, "body_length": len(canonical)}
    )

    return Response(
        content=canonical,
        status_code=200,
        media_type="application/json",
        headers={"X-Message-Id": message_id},
    )
