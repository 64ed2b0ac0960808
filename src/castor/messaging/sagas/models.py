"""Durable saga state and its status machine.

Allowed transitions::

    Running      -> Compensating | Completed | Failed | TimedOut
    Compensating -> Compensated | Failed | TimedOut

Compensated, Completed, Failed and TimedOut are terminal: they carry
``completed_at`` and never change again. State objects are immutable; every
helper returns an updated copy for ``SagaStore.update``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from castor.core.clock import new_id
from castor.errors import InvalidStateTransitionError, ValidationError

if TYPE_CHECKING:
    from datetime import datetime, timedelta


class SagaStatus(str, Enum):
    RUNNING = "Running"
    COMPENSATING = "Compensating"
    COMPENSATED = "Compensated"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self not in (SagaStatus.RUNNING, SagaStatus.COMPENSATING)


_TRANSITIONS: dict[SagaStatus, frozenset[SagaStatus]] = {
    SagaStatus.RUNNING: frozenset(
        {
            SagaStatus.RUNNING,
            SagaStatus.COMPENSATING,
            SagaStatus.COMPLETED,
            SagaStatus.FAILED,
            SagaStatus.TIMED_OUT,
        }
    ),
    SagaStatus.COMPENSATING: frozenset(
        {
            SagaStatus.COMPENSATING,
            SagaStatus.COMPENSATED,
            SagaStatus.FAILED,
            SagaStatus.TIMED_OUT,
        }
    ),
}


def can_transition(current: SagaStatus, target: SagaStatus) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True, slots=True)
class SagaState:
    """One saga instance; ``data`` is an opaque snapshot (usually JSON)."""

    saga_id: str
    saga_type: str
    data: str
    status: SagaStatus
    current_step: int
    started_at: datetime
    last_updated_at: datetime
    completed_at: datetime | None = None
    correlation_id: str | None = None
    timeout_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def start(
        cls,
        saga_type: str,
        data: str,
        *,
        now: datetime,
        saga_id: str | None = None,
        correlation_id: str | None = None,
        timeout: timedelta | None = None,
    ) -> SagaState:
        """A new ``Running`` saga at step 0."""
        if not saga_type.strip():
            raise ValidationError("saga_type must not be empty")
        return cls(
            saga_id=saga_id or new_id(),
            saga_type=saga_type,
            data=data,
            status=SagaStatus.RUNNING,
            current_step=0,
            started_at=now,
            last_updated_at=now,
            correlation_id=correlation_id,
            timeout_at=None if timeout is None else now + timeout,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_stuck(self, now: datetime, older_than: timedelta) -> bool:
        return not self.is_terminal and self.last_updated_at < now - older_than

    def is_timed_out(self, now: datetime) -> bool:
        return (
            not self.is_terminal
            and self.timeout_at is not None
            and self.timeout_at <= now
        )

    def advance(self, step: int, data: str | None = None, *, now: datetime) -> SagaState:
        """Record progress to *step* (forward or, while compensating, backward)."""
        if step < 0:
            raise ValidationError("step must be >= 0")
        self._check(self.status)
        return replace(
            self,
            current_step=step,
            data=self.data if data is None else data,
            last_updated_at=now,
        )

    def complete(self, *, now: datetime) -> SagaState:
        return self._to(SagaStatus.COMPLETED, now)

    def fail(self, error_message: str, *, now: datetime) -> SagaState:
        return self._to(SagaStatus.FAILED, now, error_message=error_message)

    def start_compensation(
        self, *, now: datetime, error_message: str | None = None
    ) -> SagaState:
        return self._to(SagaStatus.COMPENSATING, now, error_message=error_message)

    def mark_compensated(self, *, now: datetime) -> SagaState:
        return self._to(SagaStatus.COMPENSATED, now)

    def time_out(self, *, now: datetime) -> SagaState:
        return self._to(
            SagaStatus.TIMED_OUT, now, error_message=self.error_message or "Saga timed out"
        )

    def _check(self, target: SagaStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidStateTransitionError(
                self.saga_id, self.status.value, target.value
            )

    def _to(
        self, target: SagaStatus, now: datetime, *, error_message: str | None = None
    ) -> SagaState:
        self._check(target)
        return replace(
            self,
            status=target,
            last_updated_at=now,
            completed_at=now if target.is_terminal else None,
            error_message=error_message if error_message is not None else self.error_message,
        )
