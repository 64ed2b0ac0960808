"""Unit-of-work boundary around the handler and its post-processors.

The caller puts a ``UnitOfWork`` into ``RequestContext.resources`` under
``UNIT_OF_WORK``. ``TransactionBehavior`` begins it, commits on ``Success``
and rolls back on ``Failure`` or fault. A unit that is already open (an
outer dispatch owns it) is reused and left for the owner to finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

from castor.core.result_primitives import Success

if TYPE_CHECKING:
    from castor.core.cancellation import CancellationToken
    from castor.core.context import RequestContext
    from castor.core.mediator_error import MediatorError
    from castor.core.result_primitives import Result

    from .base import NextStep

log = logging.getLogger(__name__)

UNIT_OF_WORK: Final[str] = "castor.unit_of_work"


@runtime_checkable
class TransactionParticipant(Protocol):
    """Something that stages writes until the unit of work finishes."""

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


@runtime_checkable
class UnitOfWork(Protocol):
    """A transaction the pipeline can begin, commit and roll back."""

    @property
    def in_transaction(self) -> bool: ...

    async def begin(self) -> None: ...
    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    def enlist(self, participant: TransactionParticipant) -> None: ...


class InMemoryUnitOfWork:
    """Coordinates in-memory stores: commit/rollback fan out to enlisted participants."""

    def __init__(self) -> None:
        self._active = False
        self._participants: list[TransactionParticipant] = []

    @property
    def in_transaction(self) -> bool:
        return self._active

    async def begin(self) -> None:
        if self._active:
            raise RuntimeError("Unit of work already started")
        self._active = True

    def enlist(self, participant: TransactionParticipant) -> None:
        if not any(p is participant for p in self._participants):
            self._participants.append(participant)

    async def commit(self) -> None:
        try:
            for participant in self._participants:
                await participant.commit()
        finally:
            self._reset()

    async def rollback(self) -> None:
        try:
            for participant in self._participants:
                await participant.rollback()
        finally:
            self._reset()

    def _reset(self) -> None:
        self._active = False
        self._participants.clear()


class TransactionBehavior:
    """Wraps the rest of the chain in the context's unit of work."""

    async def handle(
        self,
        request: Any,
        context: RequestContext,
        next_step: NextStep,
        cancellation: CancellationToken,  # noqa: ARG002
    ) -> Result[Any, MediatorError]:
        uow: UnitOfWork | None = context.resource(UNIT_OF_WORK)
        if uow is None or uow.in_transaction:
            # No unit configured, or an enclosing dispatch owns it
            return await next_step()

        name = type(request).__qualname__
        await uow.begin()
        try:
            result = await next_step()
        except BaseException:
            await _rollback_quietly(uow, name)
            raise
        if isinstance(result, Success):
            await uow.commit()
            log.debug("Committed unit of work for %s", name)
        else:
            await uow.rollback()
            log.debug(
                "Rolled back unit of work for %s (%s)", name, result.error.code
            )
        return result


async def _rollback_quietly(uow: UnitOfWork, request_name: str) -> None:
    try:
        await uow.rollback()
    except asyncio.CancelledError:
        raise
    except Exception:
        log.error(
            "Rollback failed for %s after a fault", request_name, exc_info=True
        )
