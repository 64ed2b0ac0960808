"""Application-facing API for scheduling requests and notifications."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from castor.core.clock import SYSTEM_CLOCK, new_id
from castor.errors import ValidationError
from castor.messaging._validation import require_id

from .cron import CronExpression
from .models import ScheduledMessage

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from castor.core.clock import Clock
    from castor.messaging.serialization import MessageTypeRegistry

    from .store import ScheduledMessageStore

log = logging.getLogger(__name__)


class MessageScheduler:
    """Persists messages for later dispatch by ``ScheduledMessageProcessor``.

    Message types must be registered with the ``MessageTypeRegistry`` first.
    """

    def __init__(
        self,
        store: ScheduledMessageStore,
        types: MessageTypeRegistry,
        *,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.store = store
        self.types = types
        self.clock = clock

    async def schedule(self, message: object, at: datetime) -> str:
        """Dispatch *message* once at *at* (a past time means "as soon as possible")."""
        return await self._add(message, at, cron=None)

    async def schedule_after(self, message: object, delay: timedelta) -> str:
        if delay.total_seconds() < 0:
            raise ValidationError("delay must not be negative")
        return await self._add(message, self.clock.now() + delay, cron=None)

    async def schedule_recurring(
        self, message: object, cron: str, first_at: datetime | None = None
    ) -> str:
        """Dispatch *message* on every *cron* occurrence.

        The first run is *first_at* when given, else the next occurrence.
        """
        expression = CronExpression.parse(cron)
        at = first_at if first_at is not None else expression.next_after(self.clock.now())
        return await self._add(message, at, cron=expression.expression)

    async def cancel(self, message_id: str) -> bool:
        require_id("message_id", message_id)
        cancelled = await self.store.cancel(message_id)
        log.debug("Cancel scheduled message %s: %s", message_id, cancelled)
        return cancelled

    async def _add(self, message: object, at: datetime, *, cron: str | None) -> str:
        if message is None:
            raise ValidationError("Cannot schedule None")
        name, payload = self.types.serialize(message)
        scheduled = ScheduledMessage(
            id=new_id(),
            request_type=name,
            payload=payload,
            scheduled_at=at,
            created_at=self.clock.now(),
            is_recurring=cron is not None,
            cron_expression=cron,
        )
        await self.store.add(scheduled)
        log.info(
            "Scheduled %s as %s at %s%s",
            name,
            scheduled.id,
            at.isoformat(),
            f" (cron {cron})" if cron else "",
        )
        return scheduled.id
