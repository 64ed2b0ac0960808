"""Protocols for pipeline participants.

Public surface area intentionally minimal: application code implements
``RequestHandler``/``NotificationHandler``; cross-cutting concerns implement
``PipelineBehavior``, ``PreProcessor`` or ``PostProcessor``. Every method
receives the caller's ``RequestContext`` and ``CancellationToken``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.core.cancellation import CancellationToken
    from castor.core.context import RequestContext
    from castor.core.mediator_error import MediatorError
    from castor.core.result_primitives import Result

# Contravariant input (handlers accept supertypes), invariant output
T_Req = TypeVar("T_Req", contravariant=True)
T_Res = TypeVar("T_Res")
T_Note = TypeVar("T_Note", contravariant=True)

type NextStep = Callable[[], Awaitable[Result[Any, MediatorError]]]


class RequestHandler(Protocol[T_Req, T_Res]):
    """The single terminal handler for a request type."""

    async def handle(
        self,
        request: T_Req,
        context: RequestContext,
        cancellation: CancellationToken,
    ) -> Result[T_Res, MediatorError]:
        """Process a request.

        Args:
            request: The request instance being dispatched.
            context: Per-call facts and resources supplied by the caller.
            cancellation: Cooperative cancellation signal.

        Returns:
            ``Success`` with the response or ``Failure`` with a ``MediatorError``.
            Expected failures must be returned, not raised.
        """
        ...


class NotificationHandler(Protocol[T_Note]):
    """One of zero or more handlers for a notification type."""

    async def handle(
        self,
        notification: T_Note,
        context: RequestContext,
        cancellation: CancellationToken,
    ) -> Result[None, MediatorError]: ...


class PipelineBehavior(Protocol):
    """Wraps the rest of the chain; may short-circuit by not calling ``next_step``."""

    async def handle(
        self,
        request: Any,
        context: RequestContext,
        next_step: NextStep,
        cancellation: CancellationToken,
    ) -> Result[Any, MediatorError]: ...


class PreProcessor(Protocol):
    """Runs before any behavior; returning an error stops the dispatch."""

    async def process(
        self,
        request: Any,
        context: RequestContext,
        cancellation: CancellationToken,
    ) -> MediatorError | None: ...


class PostProcessor(Protocol):
    """Runs after the handler, inside the behaviors; may replace the result with an error."""

    async def process(
        self,
        request: Any,
        context: RequestContext,
        result: Result[Any, MediatorError],
        cancellation: CancellationToken,
    ) -> MediatorError | None: ...


__all__ = (
    "NextStep",
    "NotificationHandler",
    "PipelineBehavior",
    "PostProcessor",
    "PreProcessor",
    "RequestHandler",
)
