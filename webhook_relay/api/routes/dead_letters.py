"""
Dead Letter Endpoints

Operator interface for inspecting, replaying and discarding poison messages.
Nothing here runs automatically.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from webhook_relay.api.dependencies import get_dead_letter_store
from webhook_relay.message_queue.base import DeadLetterStore

router = APIRouter(prefix="/dead-letters", tags=["Dead Letters"])


def _not_found(message_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Dead letter message {message_id} not found"
    )


@router.get("")
async def list_dead_letters(
    limit: int = Query(100, ge=1, le=1000),
    store: DeadLetterStore = Depends(get_dead_letter_store),
):
    """List dead lettered messages, oldest first."""
    messages = await store.list(limit=limit)
    return {
        "status": "ok",
        "count": len(messages),
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.get("/{message_id}")
async def get_dead_letter(
    message_id: str,
    store: DeadLetterStore = Depends(get_dead_letter_store),
):
    message = await store.get(message_id)
    if message is None:
        raise _not_found(message_id)
    return message.model_dump(mode="json")


@router.post("/{message_id}/redeliver")
async def redeliver_dead_letter(
    message_id: str,
    store: DeadLetterStore = Depends(get_dead_letter_store),
):
    """
    Replay a dead lettered message into its source queue.

    The message keeps its id and starts again with receive_count 0.
    """
    message = await store.redeliver(message_id)
    if message is None:
        raise _not_found(message_id)

    logger.info(f"Operator redelivered dead letter {message_id}")
    return {"status": "redelivered", "message_id": message.id}


@router.delete("/{message_id}")
async def delete_dead_letter(
    message_id: str,
    store: DeadLetterStore = Depends(get_dead_letter_store),
):
    if not await store.delete(message_id):
        raise _not_found(message_id)

    logger.info(f"Operator deleted dead letter {message_id}")
    return {"status": "deleted", "message_id": message_id}
