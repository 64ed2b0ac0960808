"""Background loop re-injecting due scheduled messages into the pipeline.

Notifications go through ``Mediator.publish``, everything else through
``Mediator.send``. A recurring message is re-armed at its next cron
occurrence after each success; a one-shot message is marked processed.
Failures follow the same backoff path as the outbox, and so does a recurring
message whose cron cannot be evaluated or whose re-arm fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from castor.core.clock import SYSTEM_CLOCK
from castor.core.context import RequestContext
from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.requests import Notification
from castor.core.result_primitives import Failure
from castor.errors import SerializationError, TypeResolutionError, ValidationError
from castor.messaging.worker import PollingWorker
from castor.telemetry import TelemetryContext

from .cron import CronExpression

if TYPE_CHECKING:
    from datetime import datetime

    from castor.config import SchedulingOptions
    from castor.core.clock import Clock
    from castor.mediator import Mediator
    from castor.messaging.serialization import MessageTypeRegistry
    from castor.telemetry import TelemetryReporter

    from .models import ScheduledMessage
    from .store import ScheduledMessageStore

log = logging.getLogger(__name__)


class ScheduledMessageProcessor:
    """Dispatches due scheduled messages in fixed-size batches."""

    def __init__(
        self,
        store: ScheduledMessageStore,
        mediator: Mediator,
        types: MessageTypeRegistry,
        options: SchedulingOptions,
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
        """Dispatch one batch of due messages; returns how many were attempted."""
        due = await self.store.get_due(self.options.batch_size, self.options.max_retries)
        telemetry = TelemetryContext(*self._reporters)
        processed = failed = 0
        with telemetry("scheduling.batch", size=len(due)):
            for message in due:
                if await self._process_one(message):
                    processed += 1
                else:
                    failed += 1
        telemetry.count("scheduling.processed", processed)
        telemetry.count("scheduling.failed", failed)
        if due:
            log.info(
                "Scheduled batch done: %s processed, %s failed", processed, failed
            )
        return len(due)

    def worker(self) -> PollingWorker:
        return PollingWorker(
            "scheduling", self.process_batch, self.options.processing_interval
        )

    async def _process_one(self, message: ScheduledMessage) -> bool:
        try:
            error = self._check_schedule(message)
            if error is None:
                error = await self._dispatch(message)
            if error is None:
                await self.store.mark_processed(message.id)
                if message.is_recurring:
                    error = await self._rearm(message)
                if error is None:
                    return True
            await self._record_failure(message, error)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.error(
                "Scheduled message %s could not be updated", message.id, exc_info=True
            )
        return False

    def _next_occurrence(self, message: ScheduledMessage) -> datetime:
        cron = CronExpression.parse(message.cron_expression or "")
        return cron.next_after(self.clock.now())

    def _check_schedule(self, message: ScheduledMessage) -> MediatorError | None:
        """Reject a recurring message whose cron can never re-arm it."""
        if not message.is_recurring:
            return None
        try:
            self._next_occurrence(message)
        except ValidationError as e:
            return MediatorError.from_exception(
                ErrorCodes.SCHEDULING_INVALID_CRON,
                e,
                details={"cron_expression": message.cron_expression},
            )
        return None

    async def _rearm(self, message: ScheduledMessage) -> MediatorError | None:
        # A processed recurring row stays due until re-armed
        try:
            next_time = self._next_occurrence(message)
            await self.store.reschedule_recurring(message.id, next_time)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(
                "Recurring message %s could not be re-armed", message.id, exc_info=True
            )
            return MediatorError.from_exception(ErrorCodes.PIPELINE_EXCEPTION, e)
        log.debug("Recurring message %s re-armed for %s", message.id, next_time)
        return None

    async def _record_failure(
        self, message: ScheduledMessage, error: MediatorError
    ) -> None:
        next_retry_at = self.options.backoff.next_retry_at(
            self.clock.now(), message.retry_count
        )
        await self.store.mark_failed(message.id, str(error), next_retry_at)
        log.warning(
            "Scheduled message %s failed (attempt %s/%s): %s; next retry at %s",
            message.id,
            message.retry_count + 1,
            self.options.max_retries,
            error,
            next_retry_at.isoformat(),
        )

    async def _dispatch(self, message: ScheduledMessage) -> MediatorError | None:
        try:
            payload = self.types.deserialize(message.request_type, message.payload)
        except TypeResolutionError as e:
            return MediatorError.from_exception(
                ErrorCodes.SCHEDULING_TYPE_NOT_REGISTERED, e
            )
        except SerializationError as e:
            return MediatorError.from_exception(ErrorCodes.PIPELINE_EXCEPTION, e)
        context = RequestContext.create().with_metadata("scheduled_message_id", message.id)
        if isinstance(payload, Notification):
            result = await self.mediator.publish(payload, context=context)
        else:
            result = await self.mediator.send(payload, context=context)
        return result.error if isinstance(result, Failure) else None
