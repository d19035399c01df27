"""
Relational Schema

SQLAlchemy table definitions for the database sink and the durable webhook
queue with its dead letter store.
"""
import datetime as dt

from sqlalchemy import Column, Float, Integer, LargeBinary, String, Text, DateTime, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WebhookRecordRow(Base):
    """One persisted webhook, keyed by the digest of its canonical payload."""

    __tablename__ = "webhook_records"

    record_key = Column(String(64), primary_key=True)
    message_id = Column(String(64), nullable=False)
    payload = Column(Text, nullable=False)
    event_type = Column(String(100), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False)
    persisted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: dt.datetime.now(dt.UTC))

    __table_args__ = (
        Index("ix_webhook_records_event_received", "event_type", "received_at"),
    )


class QueuedMessageRow(Base):
    """
    A message owned by a durable queue until it is acked or redriven.

    visible_at is the clock reading (epoch seconds) from which the message
    may be leased again.
    """

    __tablename__ = "webhook_queue_messages"

    id = Column(String(64), primary_key=True)
    queue_name = Column(String(80), nullable=False)
    body = Column(LargeBinary, nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)
    receive_count = Column(Integer, nullable=False, default=0)
    visible_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_webhook_queue_messages_visible", "queue_name", "visible_at"),
    )


class DeadLetterRow(Base):
    """A redriven message held until an operator redelivers or deletes it."""

    __tablename__ = "webhook_dead_letters"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(64), nullable=False, unique=True)
    store_name = Column(String(80), nullable=False, index=True)
    body = Column(LargeBinary, nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)
    receive_count = Column(Integer, nullable=False)
    dead_lettered_at = Column(DateTime(timezone=True), nullable=False)
    source_queue = Column(String(80), nullable=False)
