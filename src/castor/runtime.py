"""Wire the enabled messaging patterns around a ``HandlerRegistry``.

Each pattern is opt-in through ``FrozenConfig``: a disabled pattern adds no
behavior, no post-processor and no background worker. Stores default to the
in-memory implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from castor.config import current_config, resolve_config
from castor.core.clock import SYSTEM_CLOCK
from castor.mediator import Mediator
from castor.messaging.inbox import InboxBehavior, InboxPurger, InMemoryInboxStore
from castor.messaging.outbox import (
    InMemoryOutboxStore,
    OutboxPostProcessor,
    OutboxProcessor,
)
from castor.messaging.sagas import InMemorySagaStore, SagaMonitor
from castor.messaging.scheduling import (
    InMemoryScheduledMessageStore,
    MessageScheduler,
    ScheduledMessageProcessor,
)
from castor.messaging.serialization import MessageTypeRegistry
from castor.pipeline.registry import HandlerRegistry
from castor.pipeline.transaction import TransactionBehavior

if TYPE_CHECKING:
    from castor.config import FrozenConfig
    from castor.core.clock import Clock
    from castor.messaging.inbox import InboxStore
    from castor.messaging.outbox import OutboxStore
    from castor.messaging.sagas import SagaStore
    from castor.messaging.scheduling import ScheduledMessageStore
    from castor.messaging.worker import PollingWorker
    from castor.telemetry import TelemetryReporter

log = logging.getLogger(__name__)


@dataclass
class Runtime:
    """A mediator plus the components of every enabled pattern."""

    config: FrozenConfig
    mediator: Mediator
    types: MessageTypeRegistry
    outbox: OutboxProcessor | None = None
    inbox_purger: InboxPurger | None = None
    sagas: SagaMonitor | None = None
    scheduler: MessageScheduler | None = None
    scheduled: ScheduledMessageProcessor | None = None
    _workers: list[PollingWorker] = field(default_factory=list, repr=False)

    def workers(self) -> list[PollingWorker]:
        """Background loops for the enabled patterns (created once)."""
        if not self._workers:
            if self.outbox is not None:
                self._workers.append(self.outbox.worker())
            if self.inbox_purger is not None:
                self._workers.append(self.inbox_purger.worker())
            if self.sagas is not None:
                self._workers.append(self.sagas.worker())
            if self.scheduled is not None:
                self._workers.append(self.scheduled.worker())
        return self._workers

    def start(self) -> None:
        for worker in self.workers():
            worker.start()

    async def stop(self, timeout: float | None = None) -> None:
        for worker in reversed(self._workers):
            await worker.stop(timeout)


def build_runtime(
    registry: HandlerRegistry | None = None,
    *,
    config: FrozenConfig | None = None,
    types: MessageTypeRegistry | None = None,
    clock: Clock = SYSTEM_CLOCK,
    outbox_store: OutboxStore | None = None,
    inbox_store: InboxStore | None = None,
    saga_store: SagaStore | None = None,
    scheduled_store: ScheduledMessageStore | None = None,
    reporters: tuple[TelemetryReporter, ...] = (),
) -> Runtime:
    """Register the enabled patterns on *registry* and build their processors.

    Configuration comes from *config*, else the ambient ``config_scope``,
    else a fresh ``resolve_config()``. The inbox behavior is registered
    ahead of ``TransactionBehavior`` so replays never open a unit of work.
    """
    cfg = config or current_config() or resolve_config()
    registry = registry if registry is not None else HandlerRegistry()
    types = types if types is not None else MessageTypeRegistry()
    mediator = Mediator(registry, reporters=reporters)
    runtime = Runtime(config=cfg, mediator=mediator, types=types)

    if cfg.inbox.enabled:
        inbox = inbox_store or InMemoryInboxStore(clock)
        registry.add_behavior(
            InboxBehavior(
                inbox,
                max_retries=cfg.inbox.max_retries,
                message_retention=cfg.inbox.message_retention,
                clock=clock,
            )
        )
        if cfg.inbox.purge_enabled:
            runtime.inbox_purger = InboxPurger(inbox, cfg.inbox)

    if cfg.outbox.enabled:
        outbox = outbox_store or InMemoryOutboxStore(clock)
        registry.add_behavior(TransactionBehavior())
        registry.add_post_processor(OutboxPostProcessor(outbox, types, clock=clock))
        runtime.outbox = OutboxProcessor(
            outbox, mediator, types, cfg.outbox, clock=clock, reporters=reporters
        )

    if cfg.sagas.enabled:
        runtime.sagas = SagaMonitor(
            saga_store or InMemorySagaStore(clock), cfg.sagas, clock=clock
        )

    if cfg.scheduling.enabled:
        scheduled = scheduled_store or InMemoryScheduledMessageStore(clock)
        runtime.scheduler = MessageScheduler(scheduled, types, clock=clock)
        runtime.scheduled = ScheduledMessageProcessor(
            scheduled, mediator, types, cfg.scheduling, clock=clock, reporters=reporters
        )

    log.info("Runtime built with patterns: %s", ", ".join(cfg.enabled_patterns) or "none")
    return runtime
