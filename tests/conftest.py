import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from webhook_relay.message_queue import (
    InMemoryDeadLetterStore,
    InMemoryQueue,
    QueuePolicy,
    WebhookMessage,
)
from webhook_relay.repositories import SqlAlchemySink
from webhook_relay.utils.metrics import metrics

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class ManualClock:
    """Monotonic clock the tests advance by hand to expire leases."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts from zeroed counters."""
    metrics.reset()
    yield


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def dead_letters():
    return InMemoryDeadLetterStore(name="webhook-DLQ")


@pytest.fixture
def policy(dead_letters):
    """Operational defaults: 5 receives, 300 second lease."""
    return QueuePolicy(
        visibility_timeout=300,
        max_receive_count=5,
        dead_letter_target=dead_letters,
    )


@pytest.fixture
def queue(policy, clock):
    return InMemoryQueue(policy=policy, name="webhook", clock=clock)


@pytest.fixture
def ping_message():
    return WebhookMessage(id="msg-ping", body=b'{"event":"ping"}')


@pytest.fixture
async def sink():
    """Database sink on SQLite in memory, schema created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    sink = SqlAlchemySink(engine)
    await sink.create_schema()

    yield sink

    await sink.dispose()
