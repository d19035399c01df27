"""
FastAPI Application

Main entry point for the webhook relay.
Builds the pipeline during startup, mounts routers and maps pipeline errors
to HTTP responses.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from webhook_relay import __version__
from webhook_relay.config import settings
from webhook_relay.core.exceptions import RelayError, SinkError
from webhook_relay.message_queue import (
    DeadLetterStore,
    InMemoryDeadLetterStore,
    InMemoryQueue,
    MessageQueue,
    QueueWorker,
    SqlAlchemyDeadLetterStore,
    SqlAlchemyQueue,
    build_queue_policy,
)
from webhook_relay.repositories import SqlAlchemySink
from webhook_relay.services import PersistenceConsumer
from webhook_relay.utils.metrics import metrics
from webhook_relay.utils.observability import configure_logging
from webhook_relay.api.routes import (
    health_router,
    webhooks_router,
    dead_letters_router,
    metrics_router,
)


def build_queue(engine: AsyncEngine) -> Tuple[DeadLetterStore, MessageQueue]:
    """
    Create the dead letter store, then the queue that redrives into it.

    The database backend shares the sink's engine so queued webhooks and dead
    letters survive restarts.
    """
    dead_letter_name = f"{settings.queue_name}-DLQ"

    if settings.queue_backend == "memory":
        logger.warning("Using the in-memory webhook queue; queued webhooks are lost on restart")
        dead_letters = InMemoryDeadLetterStore(name=dead_letter_name)
        policy = build_queue_policy(settings, dead_letters)
        return dead_letters, InMemoryQueue(policy=policy, name=settings.queue_name)

    dead_letters = SqlAlchemyDeadLetterStore(engine, name=dead_letter_name)
    policy = build_queue_policy(settings, dead_letters)
    queue = SqlAlchemyQueue(
        engine,
        policy=policy,
        name=settings.queue_name,
        poll_interval=settings.queue_poll_interval_seconds,
    )
    return dead_letters, queue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup (ordered, before any request is served):
    - Database engine and schema (sink, queue and dead letter tables)
    - Dead letter store, then the immutable queue policy, then the queue
    - Persistence consumer and background queue worker

    Shutdown:
    - Stop background worker gracefully (unfinished messages expire back)
    - Dispose the connection pool
    """
    configure_logging()
    logger.info("Starting webhook relay...")

    sink = SqlAlchemySink.from_settings(settings)
    try:
        await sink.create_schema()
    except SinkError as e:
        # Not fatal: /ready reports it, publishes answer 502 and consumer failures are redelivered
        logger.error(f"Database unavailable at startup: {e}")

    dead_letters, queue = build_queue(sink.engine)

    consumer = PersistenceConsumer(queue=queue, sink=sink)
    worker = QueueWorker(
        queue=queue,
        handler=consumer.handle,
        max_concurrent=settings.worker_max_concurrent,
        poll_interval=settings.worker_poll_interval_seconds,
        batch_size=settings.receive_batch_size,
        wait_seconds=settings.receive_wait_seconds,
        shutdown_timeout=settings.worker_shutdown_timeout_seconds,
    )

    app.state.dead_letters = dead_letters
    app.state.queue = queue
    app.state.sink = sink
    app.state.consumer = consumer
    app.state.worker = worker

    worker_task = asyncio.create_task(worker.start())
    app.state.worker_task = worker_task

    logger.info(
        "Webhook relay ready",
        extra={"queue": queue.name, "redrive_policy": queue.policy.to_redrive_policy()}
    )

    yield

    logger.info("Shutting down webhook relay...")

    await worker.stop()
    if not worker_task.done():
        # stop() came before the worker loop started
        worker_task.cancel()
    await asyncio.gather(worker_task, return_exceptions=True)

    await sink.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Webhook Relay",
    description="Durable webhook ingestion with leased queueing and dead letter redrive",
    version=__version__,
    lifespan=lifespan
)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    """Map pipeline errors to JSON error responses."""
    error_type = type(exc).__name__
    metrics.ingress_requests.inc(outcome=error_type)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} rejected: {error_type}: {exc}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "error": error_type,
            "detail": str(exc)
        }
    )


app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(dead_letters_router)
app.include_router(metrics_router)
