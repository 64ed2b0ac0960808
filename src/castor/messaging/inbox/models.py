"""Inbox record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class InboxMessage:
    """Idempotency record keyed by the caller's ``message_id``.

    Once processed with a cached response, repeats of the same id replay
    ``cached_response`` without invoking the handler.
    """

    message_id: str
    request_type: str
    received_at: datetime
    expires_at: datetime
    processed_at: datetime | None = None
    cached_response: str | None = None
    last_error: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None
    # JSON: correlation_id, user_id, tenant_id, timestamp
    metadata: str | None = None

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None and self.last_error is None

    @property
    def is_in_flight(self) -> bool:
        """Claimed by a first attempt that has not reported an outcome yet."""
        return (
            self.processed_at is None
            and self.last_error is None
            and self.retry_count == 0
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
