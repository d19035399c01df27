"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from typing import Any
from webhook_relay.config import get_settings


def configure_logging():
    """
    Configure loguru for production observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_queue_event(
    event: str,
    message_id: str,
    level: str = "INFO",
    **context: Any
):
    """
    Structured logging for message lifecycle transitions.

    Args:
        event: Transition name (e.g., "published", "acked", "dead_lettered")
        message_id: The message involved
        level: Log level name
        **context: Additional fields (receive_count, queue, error, ...)

    Example:
        >>> log_queue_event(
        ...     "dead_lettered",
        ...     message_id="4f1c...",
        ...     level="WARNING",
        ...     receive_count=6,
        ...     queue="webhook"
        ... )
    """
    log_data = {
        "event_type": "queue_event",
        "event": event,
        "message_id": message_id,
        **context
    }

    logger.bind(**log_data).log(level, f"Queue | {event} | {message_id}")
