"""
Database Sink Interface
The narrow capability set the queue consumer needs from the relational store.
"""
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pydantic import BaseModel

from ..models.record import PersistedRecord


class WriteResult(BaseModel):
    """
    Outcome of a sink write.

    Attributes:
        record_key: Key of the written record
        inserted: False when the record already existed (duplicate delivery)
    """
    record_key: str
    inserted: bool


class SinkConnection(ABC):
    """A single checked-out connection to the database sink."""

    @abstractmethod
    async def execute(self, record: PersistedRecord) -> WriteResult:
        """
        Persist a record idempotently.

        Raises:
            WriteError: The write failed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Return the connection to the pool. Safe to call more than once."""
        pass


class DatabaseSink(ABC):
    """
    Relational store the consumer writes into.

    Usage:
        async with sink.connection() as conn:
            result = await conn.execute(record)
    """

    @abstractmethod
    async def connect(self) -> SinkConnection:
        """
        Check out a connection.

        Raises:
            SinkConnectionError: The store is unreachable
        """
        pass

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SinkConnection]:
        """Scoped connection, closed on every exit path."""
        conn = await self.connect()
        try:
            yield conn
        finally:
            await conn.close()
