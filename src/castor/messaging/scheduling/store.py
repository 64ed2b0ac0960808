"""Scheduled message store contract and in-memory implementation."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Protocol

from castor.core.clock import SYSTEM_CLOCK
from castor.errors import StoreError, ValidationError
from castor.messaging._validation import (
    require_id,
    require_non_negative,
    require_positive,
)

from .cron import CronExpression

if TYPE_CHECKING:
    from datetime import datetime

    from castor.core.clock import Clock

    from .models import ScheduledMessage

log = logging.getLogger(__name__)


class ScheduledMessageStore(Protocol):
    """Persistence for scheduled messages."""

    async def add(self, message: ScheduledMessage) -> None: ...

    async def get_due(self, batch_size: int, max_retries: int) -> list[ScheduledMessage]:
        """Due messages (unprocessed or recurring, retryable), earliest due time first."""
        ...

    async def mark_processed(self, message_id: str) -> None:
        """Set ``processed_at``/``last_executed_at`` and clear ``last_error``."""
        ...

    async def mark_failed(
        self, message_id: str, error: str, next_retry_at: datetime | None
    ) -> None: ...

    async def reschedule_recurring(self, message_id: str, next_time: datetime) -> None:
        """Re-arm a recurring message at *next_time*, resetting its retry state.

        A *next_time* in the past raises ``ValidationError``.
        """
        ...

    async def cancel(self, message_id: str) -> bool:
        """Delete the message whatever its state; False when it did not exist."""
        ...


class InMemoryScheduledMessageStore:
    """Reference store for tests and single-process deployments."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._rows: dict[str, ScheduledMessage] = {}
        self._lock = asyncio.Lock()

    async def add(self, message: ScheduledMessage) -> None:
        require_id("message.id", message.id)
        if message.is_recurring:
            if not message.cron_expression:
                raise ValidationError(
                    f"Recurring scheduled message {message.id} needs a cron expression"
                )
            CronExpression.parse(message.cron_expression)
        async with self._lock:
            if message.id in self._rows:
                raise StoreError(f"Scheduled message {message.id} already exists")
            self._rows[message.id] = message

    async def get(self, message_id: str) -> ScheduledMessage | None:
        async with self._lock:
            return self._rows.get(message_id)

    async def get_due(self, batch_size: int, max_retries: int) -> list[ScheduledMessage]:
        require_positive("batch_size", batch_size)
        require_non_negative("max_retries", max_retries)
        now = self._clock.now()
        async with self._lock:
            due = [m for m in self._rows.values() if m.is_due(now, max_retries)]
        due.sort(key=lambda m: (m.effective_due_at, m.scheduled_at))
        return due[:batch_size]

    async def mark_processed(self, message_id: str) -> None:
        require_id("message_id", message_id)
        now = self._clock.now()
        async with self._lock:
            row = self._require(message_id)
            self._rows[message_id] = replace(
                row, processed_at=now, last_executed_at=now, last_error=None
            )

    async def mark_failed(
        self, message_id: str, error: str, next_retry_at: datetime | None
    ) -> None:
        require_id("message_id", message_id)
        async with self._lock:
            row = self._require(message_id)
            self._rows[message_id] = replace(
                row,
                last_error=error,
                retry_count=row.retry_count + 1,
                next_retry_at=next_retry_at,
            )

    async def reschedule_recurring(self, message_id: str, next_time: datetime) -> None:
        require_id("message_id", message_id)
        if next_time < self._clock.now():
            raise ValidationError(
                f"Cannot reschedule {message_id} to {next_time.isoformat()}: "
                "time is in the past"
            )
        async with self._lock:
            row = self._require(message_id)
            self._rows[message_id] = replace(
                row,
                scheduled_at=next_time,
                processed_at=None,
                last_error=None,
                retry_count=0,
                next_retry_at=None,
            )

    async def cancel(self, message_id: str) -> bool:
        require_id("message_id", message_id)
        async with self._lock:
            return self._rows.pop(message_id, None) is not None

    def _require(self, message_id: str) -> ScheduledMessage:
        try:
            return self._rows[message_id]
        except KeyError:
            raise StoreError(f"Scheduled message {message_id} not found") from None
