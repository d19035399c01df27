"""
API Routes

Modular route definitions for the webhook relay API.
"""
from webhook_relay.api.routes.health import router as health_router
from webhook_relay.api.routes.webhooks import router as webhooks_router
from webhook_relay.api.routes.dead_letters import router as dead_letters_router
from webhook_relay.api.routes.metrics import router as metrics_router

__all__ = [
    "health_router",
    "webhooks_router",
    "dead_letters_router",
    "metrics_router",
]
