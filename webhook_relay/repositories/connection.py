"""
Relational Sink Connection Management
Pooled SQLAlchemy async engine with idempotent webhook record writes.
"""
import datetime as dt
from typing import Optional

from loguru import logger
from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ..config import Settings
from ..core.exceptions import SinkConnectionError, WriteError
from ..models.record import PersistedRecord
from .base import DatabaseSink, SinkConnection, WriteResult
from .tables import Base, WebhookRecordRow

# Dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class SqlAlchemyConnection(SinkConnection):
    """Checked-out pool connection that writes one record per transaction."""

    def __init__(self, connection: AsyncConnection, dialect_name: str):
        self._connection = connection
        self._insert = _UPSERT_INSERTS[dialect_name]
        self._closed = False

    async def execute(self, record: PersistedRecord) -> WriteResult:
        statement = (
            self._insert(WebhookRecordRow)
            .values(
                record_key=record.record_key,
                message_id=record.message_id,
                payload=record.payload,
                event_type=record.event_type,
                received_at=record.received_at,
                persisted_at=dt.datetime.now(dt.UTC),
            )
            .on_conflict_do_nothing(index_elements=["record_key"])
        )

        try:
            async with self._connection.begin():
                result = await self._connection.execute(statement)
        except SQLAlchemyError as e:
            raise WriteError(f"Failed to write record {record.record_key}: {e}") from e

        return WriteResult(record_key=record.record_key, inserted=result.rowcount == 1)

    async def ping(self) -> None:
        try:
            await self._connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise SinkConnectionError(f"Database sink ping failed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._connection.close()


class SqlAlchemySink(DatabaseSink):
    """
    Database sink backed by a SQLAlchemy async engine.
    The engine owns the connection pool; every connect() checks one out.
    """

    def __init__(self, engine: AsyncEngine):
        dialect_name = engine.dialect.name
        if dialect_name not in _UPSERT_INSERTS:
            raise ValueError(f"Unsupported database dialect for the sink: {dialect_name}")

        self.engine = engine
        self._dialect_name = dialect_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlAlchemySink":
        """
        Build the engine from the {user, host, password, database, port}
        connection parameters (or DATABASE_URL).
        """
        url = make_url(settings.sqlalchemy_url())
        engine_options = {"pool_pre_ping": True}
        if url.get_backend_name() != "sqlite":
            engine_options.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout_seconds,
            )

        logger.info(
            f"Creating database sink engine for {url.render_as_string(hide_password=True)}",
            extra={
                "database": url.database,
                "pool_size": settings.database_pool_size,
                "environment": settings.environment
            }
        )
        return cls(create_async_engine(url, **engine_options))

    async def connect(self) -> SqlAlchemyConnection:
        try:
            connection = await self.engine.connect()
        except (SQLAlchemyError, OSError) as e:
            raise SinkConnectionError(f"Could not connect to database sink: {e}") from e
        return SqlAlchemyConnection(connection, self._dialect_name)

    async def create_schema(self) -> None:
        """
        Create the webhook record, queue and dead letter tables if missing.
        Should be called during application startup.
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise SinkConnectionError(f"Could not create sink schema: {e}") from e
        logger.info("Database sink schema ready")

    async def ping(self) -> None:
        """
        Verify the store is reachable.

        Raises:
            SinkConnectionError: The store is unreachable
        """
        async with self.connection() as conn:
            await conn.ping()

    async def count(self, event_type: Optional[str] = None) -> int:
        """Number of persisted records, optionally for one event type."""
        query = select(func.count()).select_from(WebhookRecordRow)
        if event_type is not None:
            query = query.where(WebhookRecordRow.event_type == event_type)

        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return result.scalar_one()

    async def dispose(self) -> None:
        """
        Close all pooled connections.
        Idempotent - safe to call multiple times.
        """
        await self.engine.dispose()
        logger.info("Database sink connections closed")
