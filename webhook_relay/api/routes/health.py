"""
Health and Readiness Endpoints

Kubernetes-compatible health checks for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from webhook_relay import __version__

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the process is serving requests.
    """
    return {
        "status": "healthy",
        "service": "webhook-relay",
        "version": __version__
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check - verifies the pipeline can accept and persist webhooks.

    Verifies:
    - Queue is initialized
    - Database sink answers a ping

    Returns 200 if ready, 503 if not ready.
    """
    queue = getattr(request.app.state, "queue", None)
    sink = getattr(request.app.state, "sink", None)
    if queue is None or sink is None:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": "Pipeline not initialized"
            }
        )

    try:
        await sink.ping()
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": str(e)
            }
        )

    return {
        "status": "ready",
        "queue": queue.name,
        "database": "connected"
    }


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Webhook Relay",
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
            "queue_metrics": "/metrics/queue",
            "ingest": "/message (POST)",
            "dead_letters": "/dead-letters"
        }
    }
