"""
Metrics Endpoints

Prometheus-compatible metrics and queue statistics for observability.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import Response, JSONResponse
from loguru import logger

from webhook_relay.api.dependencies import get_queue
from webhook_relay.message_queue.base import MessageQueue
from webhook_relay.utils.metrics import metrics

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics(queue: MessageQueue = Depends(get_queue)):
    """
    Prometheus metrics endpoint.

    Refreshes the queue depth gauges, then returns every registered metric
    in Prometheus text exposition format.

    Content-Type: text/plain; version=0.0.4; charset=utf-8
    """
    try:
        queue_stats = await queue.get_metrics()

        metrics.queue_visible.set(queue_stats.visible)
        metrics.queue_in_flight.set(queue_stats.in_flight)
        metrics.queue_dead_letter.set(queue_stats.dead_letter)

        return Response(
            content=metrics.export(),
            media_type="text/plain; version=0.0.4; charset=utf-8"
        )

    except Exception as e:
        logger.error(f"Failed to export metrics: {e}", exc_info=True)
        return Response(
            content=f"# Error exporting metrics: {e}\n",
            media_type="text/plain",
            status_code=500
        )


@router.get("/metrics/queue")
async def queue_metrics(queue: MessageQueue = Depends(get_queue)):
    """
    Get webhook queue metrics.

    Returns:
        Visible, in-flight and dead letter depths plus lifetime totals
    """
    try:
        queue_stats = await queue.get_metrics()
        return {
            "status": "ok",
            "queue": queue.name,
            "redrive_policy": queue.policy.to_redrive_policy(),
            "metrics": queue_stats.model_dump()
        }

    except Exception as e:
        logger.error(f"Failed to get queue metrics: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": str(e)
            }
        )
