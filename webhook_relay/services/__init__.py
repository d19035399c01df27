"""Services package."""
from webhook_relay.services.persistence_consumer import PersistenceConsumer

__all__ = [
    "PersistenceConsumer",
]
