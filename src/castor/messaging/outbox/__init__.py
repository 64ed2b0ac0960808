"""Outbox: at-least-once publication of notifications."""

from .models import OutboxMessage
from .post_processor import OutboxPostProcessor
from .processor import OutboxProcessor
from .store import InMemoryOutboxStore, OutboxStore

__all__ = [
    "InMemoryOutboxStore",
    "OutboxMessage",
    "OutboxPostProcessor",
    "OutboxProcessor",
    "OutboxStore",
]
