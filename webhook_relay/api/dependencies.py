"""
FastAPI Dependencies

Pipeline components built during the lifespan setup phase, injected into
route handlers from application state.
"""

from fastapi import Request, HTTPException, status

from webhook_relay.message_queue.base import DeadLetterStore, MessageQueue
from webhook_relay.repositories.base import DatabaseSink


def _from_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Pipeline component '{name}' is not initialized"
        )
    return component


async def get_queue(request: Request) -> MessageQueue:
    """Webhook queue the ingress publishes to."""
    return _from_state(request, "queue")


async def get_dead_letter_store(request: Request) -> DeadLetterStore:
    """Dead letter store exposed to operators."""
    return _from_state(request, "dead_letters")


async def get_sink(request: Request) -> DatabaseSink:
    """Database sink, used by readiness checks."""
    return _from_state(request, "sink")
