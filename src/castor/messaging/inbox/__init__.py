"""Inbox: idempotent request handling keyed by the caller's idempotency key."""

from .behavior import InboxBehavior
from .models import InboxMessage
from .purger import InboxPurger
from .store import InboxStore, InMemoryInboxStore

__all__ = [
    "InMemoryInboxStore",
    "InboxBehavior",
    "InboxMessage",
    "InboxPurger",
    "InboxStore",
]
