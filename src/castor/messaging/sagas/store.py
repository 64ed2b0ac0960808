"""Saga store contract and in-memory implementation.

The core provides the durable record and the recovery queries only; step
logic lives in application handlers.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
import logging
from typing import TYPE_CHECKING, Protocol

from castor.core.clock import SYSTEM_CLOCK
from castor.errors import InvalidStateTransitionError, StoreError, ValidationError
from castor.messaging._validation import require_id, require_positive

from .models import SagaStatus, can_transition

if TYPE_CHECKING:
    from castor.core.clock import Clock

    from .models import SagaState

log = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class SagaStore(Protocol):
    """Persistence for saga state."""

    async def add(self, state: SagaState) -> None:
        """Insert a new saga; it must be ``Running`` at step 0."""
        ...

    async def update(self, state: SagaState) -> SagaState:
        """Persist *state*, always advancing ``last_updated_at``.

        Terminal states require ``completed_at`` and are immutable afterwards.
        Returns the stored state.
        """
        ...

    async def get(self, saga_id: str) -> SagaState | None: ...

    async def get_stuck_sagas(
        self, older_than: timedelta, batch_size: int
    ) -> list[SagaState]:
        """Running/Compensating sagas idle longer than *older_than*, oldest first."""
        ...

    async def get_timed_out(self, batch_size: int) -> list[SagaState]:
        """Non-terminal sagas whose ``timeout_at`` has passed, earliest first."""
        ...


class InMemorySagaStore:
    """Reference store for tests and single-process deployments."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._rows: dict[str, SagaState] = {}
        self._lock = asyncio.Lock()

    async def add(self, state: SagaState) -> None:
        require_id("state.saga_id", state.saga_id)
        if state.status is not SagaStatus.RUNNING or state.current_step != 0:
            raise ValidationError(
                f"New saga {state.saga_id} must be Running at step 0 "
                f"(got {state.status.value} at step {state.current_step})"
            )
        async with self._lock:
            if state.saga_id in self._rows:
                raise StoreError(f"Saga {state.saga_id} already exists")
            self._rows[state.saga_id] = state

    async def update(self, state: SagaState) -> SagaState:
        require_id("state.saga_id", state.saga_id)
        if state.status.is_terminal and state.completed_at is None:
            raise ValidationError(
                f"Saga {state.saga_id} is {state.status.value} but has no completed_at"
            )
        async with self._lock:
            current = self._rows.get(state.saga_id)
            if current is None:
                raise StoreError(f"Saga {state.saga_id} not found")
            if not can_transition(current.status, state.status):
                raise InvalidStateTransitionError(
                    state.saga_id, current.status.value, state.status.value
                )
            # Strictly later than the stored value even when the clock has not moved
            stamp = max(self._clock.now(), current.last_updated_at + _TICK)
            stored = replace(state, last_updated_at=stamp)
            self._rows[state.saga_id] = stored
        log.debug(
            "Saga %s updated: %s step %s",
            stored.saga_id,
            stored.status.value,
            stored.current_step,
        )
        return stored

    async def get(self, saga_id: str) -> SagaState | None:
        require_id("saga_id", saga_id)
        async with self._lock:
            return self._rows.get(saga_id)

    async def get_stuck_sagas(
        self, older_than: timedelta, batch_size: int
    ) -> list[SagaState]:
        require_positive("batch_size", batch_size)
        if older_than < timedelta(0):
            raise ValidationError("older_than must not be negative")
        now = self._clock.now()
        async with self._lock:
            stuck = [s for s in self._rows.values() if s.is_stuck(now, older_than)]
        stuck.sort(key=lambda s: s.last_updated_at)
        return stuck[:batch_size]

    async def get_timed_out(self, batch_size: int) -> list[SagaState]:
        require_positive("batch_size", batch_size)
        now = self._clock.now()
        async with self._lock:
            expired = [s for s in self._rows.values() if s.is_timed_out(now)]
        expired.sort(key=lambda s: s.timeout_at or now)
        return expired[:batch_size]
