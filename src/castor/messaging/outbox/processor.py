"""Background drain of pending outbox messages.

Each pending message is resolved, deserialized and published through the
mediator. Success marks it processed; any failure (including an unknown
type or a bad payload) marks it failed with exponential backoff. A message
whose ``retry_count`` reaches ``max_retries`` is no longer fetched, which
dead-letters it in place.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from castor.core.clock import SYSTEM_CLOCK
from castor.core.context import RequestContext
from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.result_primitives import Failure
from castor.errors import SerializationError, TypeResolutionError
from castor.messaging.worker import PollingWorker
from castor.telemetry import TelemetryContext

if TYPE_CHECKING:
    from castor.config import OutboxOptions
    from castor.core.clock import Clock
    from castor.mediator import Mediator
    from castor.messaging.serialization import MessageTypeRegistry
    from castor.telemetry import TelemetryReporter

    from .models import OutboxMessage
    from .store import OutboxStore

log = logging.getLogger(__name__)


class OutboxProcessor:
    """Drains the outbox in fixed-size batches."""

    def __init__(
        self,
        store: OutboxStore,
        mediator: Mediator,
        types: MessageTypeRegistry,
        options: OutboxOptions,
        *,
        clock: Clock = SYSTEM_CLOCK,
        reporters: tuple[TelemetryReporter, ...] = (),
    ) -> None:
        self.store = store
        self.mediator = mediator
        self.types = types
        self.options = options
        self.clock = clock
        self._reporters = reporters

    async def process_batch(self) -> int:
        """Publish one batch of pending messages; returns how many were attempted."""
        pending = await self.store.get_pending(
            self.options.batch_size, self.options.max_retries
        )
        telemetry = TelemetryContext(*self._reporters)
        processed = failed = 0
        with telemetry("outbox.batch", size=len(pending)):
            for message in pending:
                if await self._process_one(message):
                    processed += 1
                else:
                    failed += 1
            await self.store.commit()
        telemetry.count("outbox.processed", processed)
        telemetry.count("outbox.failed", failed)
        if pending:
            log.info(
                "Outbox batch done: %s processed, %s failed", processed, failed
            )

        if self.options.processed_retention is not None:
            await self.store.purge_processed(self.options.processed_retention)
        return len(pending)

    def worker(self) -> PollingWorker:
        return PollingWorker(
            "outbox", self.process_batch, self.options.processing_interval
        )

    async def _process_one(self, message: OutboxMessage) -> bool:
        try:
            error = await self._publish(message)
            if error is None:
                await self.store.mark_processed(message.id)
                log.debug("Published outbox message %s", message.id)
                return True
            next_retry_at = self.options.backoff.next_retry_at(
                self.clock.now(), message.retry_count
            )
            await self.store.mark_failed(message.id, str(error), next_retry_at)
            log.warning(
                "Outbox message %s failed (attempt %s/%s): %s; next retry at %s",
                message.id,
                message.retry_count + 1,
                self.options.max_retries,
                error,
                next_retry_at.isoformat(),
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            # Store faults on one message must not stall the rest of the batch
            log.error(
                "Outbox message %s could not be updated", message.id, exc_info=True
            )
        return False

    async def _publish(self, message: OutboxMessage) -> MediatorError | None:
        try:
            notification = self.types.deserialize(
                message.notification_type, message.payload
            )
        except TypeResolutionError as e:
            return MediatorError.from_exception(ErrorCodes.OUTBOX_TYPE_NOT_REGISTERED, e)
        except SerializationError as e:
            return MediatorError.from_exception(
                ErrorCodes.OUTBOX_DESERIALIZATION_FAILED, e
            )
        context = RequestContext.create().with_metadata("outbox_message_id", message.id)
        result = await self.mediator.publish(notification, context=context)
        return result.error if isinstance(result, Failure) else None
