"""
Webhook Relay

Durable webhook ingestion: HTTP ingress, leased queue with dead letter
redrive, and an idempotent relational persistence consumer.
"""

__version__ = "1.0.0"
