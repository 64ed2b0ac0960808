"""Idempotent request handling through the inbox.

Only requests marked ``IdempotentRequest`` are handled here; everything else
passes straight through. The idempotency key comes from
``RequestContext.idempotency_key``.

Outcome policy:
- A functional ``Success`` or ``Failure`` is cached as a response envelope and
  replayed verbatim for every later request with the same key.
- A fault (a ``*.exception``/``*.cancelled`` failure, or an exception from
  the rest of the chain) is recorded with ``mark_failed``, which increments
  ``retry_count``; the request may be retried until ``max_retries`` is hit.
  Starting a retry also counts as an attempt.
- A key whose first attempt has not finished yet is rejected with
  ``inbox.in_progress`` instead of running the handler a second time.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from castor.core.clock import SYSTEM_CLOCK
from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.requests import IdempotentRequest, message_type_name, response_type_of
from castor.core.result_primitives import Failure
from castor.errors import SerializationError, StoreError
from castor.messaging._validation import require_non_negative
from castor.messaging.serialization import ResponseEnvelope

from .models import InboxMessage

if TYPE_CHECKING:
    from datetime import timedelta

    from castor.core.cancellation import CancellationToken
    from castor.core.clock import Clock
    from castor.core.context import RequestContext
    from castor.core.result_primitives import Result
    from castor.pipeline.base import NextStep

    from .store import InboxStore

log = logging.getLogger(__name__)


class InboxBehavior:
    """Deduplicates idempotent requests by key and caches their outcome.

    Register it before ``TransactionBehavior`` so replays never open a unit
    of work.
    """

    def __init__(
        self,
        store: InboxStore,
        *,
        max_retries: int,
        message_retention: timedelta,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.store = store
        self.max_retries = require_non_negative("max_retries", max_retries)
        self.message_retention = message_retention
        self.clock = clock

    async def handle(
        self,
        request: Any,
        context: RequestContext,
        next_step: NextStep,
        cancellation: CancellationToken,  # noqa: ARG002
    ) -> Result[Any, MediatorError]:
        if not isinstance(request, IdempotentRequest):
            return await next_step()

        request_name = type(request).__qualname__
        message_id = context.idempotency_key
        if message_id is None or not message_id.strip():
            log.warning(
                "Idempotent request %s received without an idempotency key "
                "(correlation_id=%s)",
                request_name,
                context.correlation_id,
            )
            return Failure(
                MediatorError.create(
                    ErrorCodes.INBOX_MISSING_MESSAGE_ID,
                    "Idempotent requests require an idempotency key.",
                    details={"request": request_name},
                )
            )

        existing = await self.store.get(message_id)
        if existing is None:
            try:
                await self.store.add(self._new_record(message_id, request, context))
            except StoreError:
                # Lost the insert race to a concurrent request with the same key
                existing = await self.store.get(message_id)
                if existing is None:
                    raise
                if existing.is_processed and existing.cached_response is not None:
                    return self._replay(message_id, existing.cached_response, request)
                return self._in_progress(message_id, request_name, context)
        elif existing.is_processed and existing.cached_response is not None:
            log.info(
                "Replaying cached response for message %s (correlation_id=%s)",
                message_id,
                context.correlation_id,
            )
            return self._replay(message_id, existing.cached_response, request)
        elif existing.is_in_flight:
            return self._in_progress(message_id, request_name, context)
        elif existing.retry_count >= self.max_retries:
            log.warning(
                "Message %s exceeded max retries (%s) (correlation_id=%s)",
                message_id,
                self.max_retries,
                context.correlation_id,
            )
            return Failure(
                MediatorError.create(
                    ErrorCodes.INBOX_MAX_RETRIES_EXCEEDED,
                    f"Message has failed {existing.retry_count} times and "
                    "will not be retried.",
                    details={"message_id": message_id, "request": request_name},
                )
            )
        else:
            # Counted up front so an attempt that never reports back still counts
            await self.store.mark_failed(
                message_id, existing.last_error or "Retry", None
            )
            log.debug(
                "Retrying message %s (attempt %s)", message_id, existing.retry_count + 1
            )

        try:
            result = await next_step()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error(
                "Error processing message %s (correlation_id=%s)",
                message_id,
                context.correlation_id,
                exc_info=True,
            )
            await self.store.mark_failed(message_id, str(exc) or type(exc).__name__, None)
            raise

        if isinstance(result, Failure) and (
            ErrorCodes.is_fault(result.error.code) or result.error.is_cancellation
        ):
            await self.store.mark_failed(message_id, str(result.error), None)
            log.debug(
                "Message %s not cached: %s (correlation_id=%s)",
                message_id,
                result.error.code,
                context.correlation_id,
            )
            return result

        try:
            response = ResponseEnvelope.encode(result)
        except SerializationError as e:
            log.warning("Outcome of message %s cannot be cached: %s", message_id, e)
            await self.store.mark_failed(message_id, str(e), None)
            return result
        await self.store.mark_processed(message_id, response)
        log.info(
            "Processed and cached message %s (correlation_id=%s)",
            message_id,
            context.correlation_id,
        )
        return result

    def _new_record(
        self, message_id: str, request: Any, context: RequestContext
    ) -> InboxMessage:
        now = self.clock.now()
        metadata = {
            "correlation_id": context.correlation_id,
            "user_id": context.user_id,
            "tenant_id": context.tenant_id,
            "timestamp": context.timestamp.isoformat(),
        }
        return InboxMessage(
            message_id=message_id,
            request_type=message_type_name(request),
            received_at=now,
            expires_at=now + self.message_retention,
            metadata=json.dumps(metadata),
        )

    @staticmethod
    def _in_progress(
        message_id: str, request_name: str, context: RequestContext
    ) -> Result[Any, MediatorError]:
        log.info(
            "Message %s is already being processed (correlation_id=%s)",
            message_id,
            context.correlation_id,
        )
        return Failure(
            MediatorError.create(
                ErrorCodes.INBOX_IN_PROGRESS,
                "A request with this idempotency key is still being processed.",
                details={"message_id": message_id, "request": request_name},
            )
        )

    @staticmethod
    def _replay(
        message_id: str, cached_response: str, request: Any
    ) -> Result[Any, MediatorError]:
        try:
            return ResponseEnvelope.decode(
                cached_response, response_type_of(type(request))
            )
        except SerializationError as e:
            return Failure(
                MediatorError.from_exception(
                    ErrorCodes.INBOX_DESERIALIZATION_FAILED,
                    e,
                    details={"message_id": message_id},
                )
            )
