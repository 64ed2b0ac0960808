"""Scheduled message record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class ScheduledMessage:
    """A request or notification to dispatch at ``scheduled_at``.

    One-shot messages are eligible only while unprocessed. Recurring ones
    stay eligible and are re-armed by ``reschedule_recurring``.
    """

    id: str
    request_type: str
    payload: str
    scheduled_at: datetime
    created_at: datetime
    processed_at: datetime | None = None
    last_executed_at: datetime | None = None
    last_error: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None
    is_recurring: bool = False
    cron_expression: str | None = None

    @property
    def effective_due_at(self) -> datetime:
        """A pending retry time always wins over the schedule."""
        return self.next_retry_at if self.next_retry_at is not None else self.scheduled_at

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None and self.last_error is None

    def is_due(self, now: datetime, max_retries: int) -> bool:
        return (
            (self.processed_at is None or self.is_recurring)
            and self.retry_count < max_retries
            and self.effective_due_at <= now
        )

    def is_dead_lettered(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries and self.processed_at is None
