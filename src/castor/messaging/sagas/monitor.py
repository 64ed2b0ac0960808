"""Saga recovery loop: times out overdue sagas and reports stalled ones."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from castor.core.clock import SYSTEM_CLOCK
from castor.errors import InvalidStateTransitionError
from castor.messaging.worker import PollingWorker

from .models import SagaState

if TYPE_CHECKING:
    from castor.config import SagaOptions
    from castor.core.clock import Clock

    from .store import SagaStore

log = logging.getLogger(__name__)


class SagaMonitor:
    """Applies the saga options to a ``SagaStore``."""

    def __init__(
        self, store: SagaStore, options: SagaOptions, *, clock: Clock = SYSTEM_CLOCK
    ) -> None:
        self.store = store
        self.options = options
        self.clock = clock

    async def start(
        self,
        saga_type: str,
        data: str,
        *,
        correlation_id: str | None = None,
        saga_id: str | None = None,
    ) -> SagaState:
        """Create and store a ``Running`` saga using the configured default timeout."""
        state = SagaState.start(
            saga_type,
            data,
            now=self.clock.now(),
            saga_id=saga_id,
            correlation_id=correlation_id,
            timeout=self.options.default_timeout,
        )
        await self.store.add(state)
        return state

    async def find_stuck(self) -> list[SagaState]:
        return await self.store.get_stuck_sagas(
            self.options.stuck_saga_threshold, self.options.stuck_saga_batch_size
        )

    async def expire_timed_out(self) -> int:
        """Move every overdue non-terminal saga to ``TimedOut``."""
        expired = 0
        for state in await self.store.get_timed_out(self.options.stuck_saga_batch_size):
            try:
                await self.store.update(state.time_out(now=self.clock.now()))
            except asyncio.CancelledError:
                raise
            except InvalidStateTransitionError:
                # Finished concurrently between the query and the update
                log.debug("Saga %s finished before it could time out", state.saga_id)
                continue
            except Exception:
                log.error("Could not time out saga %s", state.saga_id, exc_info=True)
                continue
            expired += 1
            log.warning("Saga %s (%s) timed out", state.saga_id, state.saga_type)
        return expired

    async def check_once(self) -> int:
        expired = await self.expire_timed_out()
        stuck = await self.find_stuck()
        for state in stuck:
            log.warning(
                "Saga %s (%s) stuck in %s at step %s since %s",
                state.saga_id,
                state.saga_type,
                state.status.value,
                state.current_step,
                state.last_updated_at.isoformat(),
            )
        return expired + len(stuck)

    def worker(self) -> PollingWorker:
        return PollingWorker("sagas", self.check_once, self.options.check_interval)
