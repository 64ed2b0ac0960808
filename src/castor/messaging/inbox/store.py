"""Inbox store contract and in-memory implementation."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Protocol

from castor.core.clock import SYSTEM_CLOCK
from castor.errors import StoreError
from castor.messaging._validation import require_id, require_positive

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from castor.core.clock import Clock

    from .models import InboxMessage

log = logging.getLogger(__name__)


class InboxStore(Protocol):
    """Persistence for inbox records; ``message_id`` is unique."""

    async def get(self, message_id: str) -> InboxMessage | None: ...

    async def add(self, message: InboxMessage) -> None:
        """Insert a new record; a duplicate ``message_id`` raises ``StoreError``."""
        ...

    async def mark_processed(self, message_id: str, response: str | None) -> None:
        """Set ``processed_at``, cache *response* and clear ``last_error``."""
        ...

    async def mark_failed(
        self, message_id: str, error: str, next_retry_at: datetime | None
    ) -> None:
        """Record *error* and increment ``retry_count``."""
        ...

    async def get_expired(self, batch_size: int) -> list[InboxMessage]:
        """Records whose ``expires_at`` has passed, oldest expiry first."""
        ...

    async def remove_expired(self, message_ids: Iterable[str]) -> None: ...


class InMemoryInboxStore:
    """Reference store for tests and single-process deployments."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._rows: dict[str, InboxMessage] = {}
        self._lock = asyncio.Lock()

    async def get(self, message_id: str) -> InboxMessage | None:
        require_id("message_id", message_id)
        async with self._lock:
            return self._rows.get(message_id)

    async def add(self, message: InboxMessage) -> None:
        require_id("message.message_id", message.message_id)
        async with self._lock:
            if message.message_id in self._rows:
                raise StoreError(f"Inbox message {message.message_id} already exists")
            self._rows[message.message_id] = message

    async def mark_processed(self, message_id: str, response: str | None) -> None:
        require_id("message_id", message_id)
        async with self._lock:
            row = self._require(message_id)
            self._rows[message_id] = replace(
                row,
                processed_at=self._clock.now(),
                cached_response=response,
                last_error=None,
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

    async def get_expired(self, batch_size: int) -> list[InboxMessage]:
        require_positive("batch_size", batch_size)
        now = self._clock.now()
        async with self._lock:
            expired = [m for m in self._rows.values() if m.is_expired(now)]
        expired.sort(key=lambda m: m.expires_at)
        return expired[:batch_size]

    async def remove_expired(self, message_ids: Iterable[str]) -> None:
        async with self._lock:
            for message_id in message_ids:
                self._rows.pop(message_id, None)

    async def count(self) -> int:
        async with self._lock:
            return len(self._rows)

    def _require(self, message_id: str) -> InboxMessage:
        try:
            return self._rows[message_id]
        except KeyError:
            raise StoreError(f"Inbox message {message_id} not found") from None
