"""Writes a request's deferred notifications to the outbox after handler success."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from castor.core.clock import SYSTEM_CLOCK
from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.requests import HasNotifications
from castor.core.result_primitives import Success
from castor.errors import SerializationError, TypeResolutionError
from castor.pipeline.transaction import UNIT_OF_WORK

from .models import OutboxMessage

if TYPE_CHECKING:
    from castor.core.cancellation import CancellationToken
    from castor.core.clock import Clock
    from castor.core.context import RequestContext
    from castor.core.result_primitives import Result
    from castor.messaging.serialization import MessageTypeRegistry
    from castor.pipeline.transaction import UnitOfWork

    from .store import OutboxStore

log = logging.getLogger(__name__)


class _PendingOutboxWrite:
    """Unit-of-work participant: messages reach the store only on commit."""

    def __init__(self, store: OutboxStore, messages: list[OutboxMessage]) -> None:
        self._store = store
        self._messages = messages

    async def commit(self) -> None:
        for message in self._messages:
            await self._store.add(message)
        await self._store.commit()

    async def rollback(self) -> None:
        log.debug("Discarding %s outbox message(s) on rollback", len(self._messages))
        self._messages = []


class OutboxPostProcessor:
    """Persists notifications from ``HasNotifications`` requests.

    Inside an open unit of work the write joins that transaction, so the
    messages are never lost on commit and never recorded on rollback.
    Without one the messages are added and committed straight away.
    """

    def __init__(
        self,
        store: OutboxStore,
        types: MessageTypeRegistry,
        *,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.store = store
        self.types = types
        self.clock = clock

    async def process(
        self,
        request: Any,
        context: RequestContext,
        result: Result[Any, MediatorError],
        cancellation: CancellationToken,  # noqa: ARG002
    ) -> MediatorError | None:
        if not isinstance(result, Success) or not isinstance(request, HasNotifications):
            return None
        notifications = list(request.get_notifications())
        if not notifications:
            return None

        now = self.clock.now()
        messages: list[OutboxMessage] = []
        for notification in notifications:
            try:
                name, payload = self.types.serialize(notification)
            except TypeResolutionError as e:
                return MediatorError.from_exception(
                    ErrorCodes.OUTBOX_TYPE_NOT_REGISTERED,
                    e,
                    details={"notification_type": e.type_name},
                )
            except SerializationError as e:
                return MediatorError.from_exception(
                    ErrorCodes.OUTBOX_DESERIALIZATION_FAILED,
                    e,
                    details={"notification_type": type(notification).__qualname__},
                )
            messages.append(OutboxMessage.create(name, payload, created_at=now))

        uow: UnitOfWork | None = context.resource(UNIT_OF_WORK)
        if uow is not None and uow.in_transaction:
            uow.enlist(_PendingOutboxWrite(self.store, messages))
        else:
            await _PendingOutboxWrite(self.store, messages).commit()
        log.debug(
            "Wrote %s outbox message(s) for %s (correlation_id=%s)",
            len(messages),
            type(request).__qualname__,
            context.correlation_id,
        )
        return None
