"""
Repositories Layer
Relational persistence for consumed webhooks.
"""
from .base import DatabaseSink, SinkConnection, WriteResult
from .connection import SqlAlchemySink, SqlAlchemyConnection
from .tables import Base, DeadLetterRow, QueuedMessageRow, WebhookRecordRow

__all__ = [
    "DatabaseSink",
    "SinkConnection",
    "WriteResult",
    "SqlAlchemySink",
    "SqlAlchemyConnection",
    "Base",
    "WebhookRecordRow",
    "QueuedMessageRow",
    "DeadLetterRow",
]
