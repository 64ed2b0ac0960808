"""Scheduled messages: deferred and cron-recurring dispatch."""

from .cron import CronExpression, next_occurrence
from .models import ScheduledMessage
from .processor import ScheduledMessageProcessor
from .scheduler import MessageScheduler
from .store import InMemoryScheduledMessageStore, ScheduledMessageStore

__all__ = [
    "CronExpression",
    "InMemoryScheduledMessageStore",
    "MessageScheduler",
    "ScheduledMessage",
    "ScheduledMessageProcessor",
    "ScheduledMessageStore",
    "next_occurrence",
]
