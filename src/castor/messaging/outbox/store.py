"""Outbox store contract and in-memory implementation."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Protocol

from castor.core.clock import SYSTEM_CLOCK
from castor.errors import StoreError
from castor.messaging._validation import (
    require_id,
    require_non_negative,
    require_positive,
)

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from castor.core.clock import Clock

    from .models import OutboxMessage

log = logging.getLogger(__name__)


class OutboxStore(Protocol):
    """Persistence for outbox messages.

    Single-row mutations (``mark_processed``/``mark_failed``) must be atomic
    under concurrent foreground and background access.
    """

    async def add(self, message: OutboxMessage) -> None:
        """Stage *message*; visible to ``get_pending`` once committed."""
        ...

    async def get_pending(self, batch_size: int, max_retries: int) -> list[OutboxMessage]:
        """Unprocessed, retryable, due messages ordered by ``created_at``."""
        ...

    async def mark_processed(self, message_id: str) -> None:
        """Set ``processed_at`` and clear ``last_error``."""
        ...

    async def mark_failed(
        self, message_id: str, error: str, next_retry_at: datetime | None
    ) -> None:
        """Record *error*, increment ``retry_count`` and set ``next_retry_at``."""
        ...

    async def commit(self) -> None: ...

    async def purge_processed(self, older_than: timedelta) -> int:
        """Delete messages processed more than *older_than* ago; return the count."""
        ...


class InMemoryOutboxStore:
    """Reference store for tests and single-process deployments."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._rows: dict[str, OutboxMessage] = {}
        self._lock = asyncio.Lock()

    async def add(self, message: OutboxMessage) -> None:
        require_id("message.id", message.id)
        async with self._lock:
            if message.id in self._rows:
                raise StoreError(f"Outbox message {message.id} already exists")
            self._rows[message.id] = message

    async def get(self, message_id: str) -> OutboxMessage | None:
        async with self._lock:
            return self._rows.get(message_id)

    async def get_pending(self, batch_size: int, max_retries: int) -> list[OutboxMessage]:
        require_positive("batch_size", batch_size)
        require_non_negative("max_retries", max_retries)
        now = self._clock.now()
        async with self._lock:
            pending = [m for m in self._rows.values() if m.is_pending(now, max_retries)]
        pending.sort(key=lambda m: m.created_at)
        return pending[:batch_size]

    async def mark_processed(self, message_id: str) -> None:
        require_id("message_id", message_id)
        async with self._lock:
            row = self._require(message_id)
            self._rows[message_id] = replace(
                row, processed_at=self._clock.now(), last_error=None
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

    async def commit(self) -> None:
        # Writes are applied immediately; nothing is buffered here
        return None

    async def purge_processed(self, older_than: timedelta) -> int:
        cutoff = self._clock.now() - older_than
        async with self._lock:
            doomed = [
                m.id
                for m in self._rows.values()
                if m.processed_at is not None and m.processed_at < cutoff
            ]
            for message_id in doomed:
                del self._rows[message_id]
        if doomed:
            log.debug("Purged %s processed outbox message(s)", len(doomed))
        return len(doomed)

    async def all(self) -> list[OutboxMessage]:
        async with self._lock:
            return sorted(self._rows.values(), key=lambda m: m.created_at)

    def _require(self, message_id: str) -> OutboxMessage:
        try:
            return self._rows[message_id]
        except KeyError:
            raise StoreError(f"Outbox message {message_id} not found") from None
