import pytest
from fastapi.testclient import TestClient

from webhook_relay.api.main import app
from webhook_relay.message_queue import InMemoryDeadLetterStore, InMemoryQueue, QueuePolicy


@pytest.fixture
def client():
    """Create test client (lifespan not run; state is set per test)."""
    return TestClient(app)


@pytest.fixture
def pipeline():
    """Fresh queue and dead letter store installed on the app."""
    dead_letters = InMemoryDeadLetterStore(name="webhook-DLQ")
    policy = QueuePolicy(visibility_timeout=300, max_receive_count=5, dead_letter_target=dead_letters)
    queue = InMemoryQueue(policy=policy, name="webhook")

    app.state.queue = queue
    app.state.dead_letters = dead_letters

    yield queue, dead_letters

    for name in ("queue", "dead_letters", "sink"):
        if hasattr(app.state, name):
            delattr(app.state, name)
