"""Exponential backoff for the background retry paths.

The delay before retry ``n`` (``n`` failures already recorded) is
``base_delay * 2**n``, capped at ``max_delay``. No jitter: the schedule is
persisted as ``next_retry_at`` and must be reproducible.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from castor.errors import ValidationError

# Large exponents overflow timedelta; the cap (or timedelta.max) applies instead
_MAX_EXPONENT = 40


@dataclass(frozen=True)
class BackoffPolicy:
    """Deterministic exponential backoff."""

    base_delay: timedelta = timedelta(seconds=5)
    max_delay: timedelta | None = timedelta(hours=1)

    def __post_init__(self) -> None:
        """Validate invariants to keep the retry schedule predictable."""
        if self.base_delay <= timedelta(0):
            raise ValidationError("BackoffPolicy.base_delay must be > 0")
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValidationError("BackoffPolicy.max_delay must be >= base_delay")

    @classmethod
    def from_seconds(
        cls, base_delay_s: float, max_delay_s: float | None = None
    ) -> BackoffPolicy:
        return cls(
            base_delay=timedelta(seconds=base_delay_s),
            max_delay=None if max_delay_s is None else timedelta(seconds=max_delay_s),
        )

    def delay_for(self, retry_count: int) -> timedelta:
        """Delay after the failure that follows *retry_count* earlier failures."""
        if retry_count < 0:
            raise ValidationError("retry_count must be >= 0")
        try:
            delay = self.base_delay * (2 ** min(retry_count, _MAX_EXPONENT))
        except OverflowError:
            return self.max_delay if self.max_delay is not None else timedelta.max
        if self.max_delay is not None and delay > self.max_delay:
            return self.max_delay
        return delay

    def next_retry_at(self, now: datetime, retry_count: int) -> datetime:
        """``now + base_delay * 2**retry_count`` (capped).

        Saturates at ``datetime.max`` in *now*'s timezone when the sum leaves
        the calendar range.
        """
        delay = self.delay_for(retry_count)
        try:
            return now + delay
        except OverflowError:
            return datetime.max.replace(tzinfo=now.tzinfo)
