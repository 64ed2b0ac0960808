"""Outbox record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from castor.core.clock import new_id

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class OutboxMessage:
    """A notification persisted with the change that produced it.

    ``processed_at`` set implies ``last_error`` is None. Only the background
    processor changes a stored message; it is deleted only by an explicit purge.
    """

    id: str
    notification_type: str
    payload: str
    created_at: datetime
    processed_at: datetime | None = None
    last_error: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None

    @classmethod
    def create(
        cls,
        notification_type: str,
        payload: str,
        *,
        created_at: datetime,
        id: str | None = None,  # noqa: A002
    ) -> OutboxMessage:
        return cls(
            id=id or new_id(),
            notification_type=notification_type,
            payload=payload,
            created_at=created_at,
        )

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None and self.last_error is None

    def is_dead_lettered(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries and not self.is_processed

    def is_pending(self, now: datetime, max_retries: int) -> bool:
        """Eligible for the next drain."""
        return (
            self.processed_at is None
            and self.retry_count < max_retries
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )
