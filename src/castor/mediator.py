"""The user-facing dispatch entry point.

``Mediator.send`` runs a request through its resolved pipeline and always
returns a ``Result``; ``Mediator.publish`` fans a notification out to every
registered handler. Faults never escape: stage faults are folded by the
pipeline, and anything left over is caught here as ``mediator.pipeline.exception``.

Fan-out policy: notification handlers run sequentially in registration order
and the first failure aborts the remaining handlers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.core.cancellation import CancellationToken
from castor.core.context import RequestContext
from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.result_primitives import Failure, Success
from castor.pipeline._recover import Stage, component_name, run_stage
from castor.pipeline.registry import HandlerRegistry
from castor.telemetry import TelemetryContext

if TYPE_CHECKING:
    from castor.core.requests import Request
    from castor.core.result_primitives import Result
    from castor.telemetry import TelemetryReporter

log = logging.getLogger(__name__)


class Mediator:
    """Dispatches requests and notifications through a ``HandlerRegistry``."""

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        *,
        reporters: tuple[TelemetryReporter, ...] = (),
    ) -> None:
        self.registry = registry if registry is not None else HandlerRegistry()
        self._reporters = reporters

    async def send[TResponse](
        self,
        request: Request[TResponse] | Any,
        *,
        context: RequestContext | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Result[TResponse, MediatorError]:
        """Dispatch *request* to its single handler.

        Args:
            request: The command or query to dispatch.
            context: Per-call context; a fresh one is created when omitted.
            cancellation: Cooperative cancellation token for this call.

        Returns:
            ``Success`` with the handler's response, or ``Failure`` with a
            ``MediatorError``. Never raises for handler or behavior faults.
        """
        if request is None:
            return self._fail(
                MediatorError.create(ErrorCodes.REQUEST_NULL, "Request must not be None.")
            )
        token = cancellation or CancellationToken.none()
        ctx = context or RequestContext.create()
        request_name = type(request).__qualname__

        if token.is_cancelled:
            return self._fail(
                MediatorError.create(
                    ErrorCodes.REQUEST_CANCELLED,
                    f"Request {request_name} was cancelled before dispatch.",
                    details={"request": request_name},
                )
            )

        pipeline = self.registry.pipeline_for(type(request))
        if pipeline is None:
            return self._fail(
                MediatorError.create(
                    ErrorCodes.HANDLER_MISSING,
                    f"No handler registered for {request_name}.",
                    details={"request": request_name},
                )
            )

        telemetry = TelemetryContext(*self._reporters)
        log.debug(
            "Sending %s through %s (correlation_id=%s)",
            request_name,
            pipeline.stage_names,
            ctx.correlation_id,
        )
        with telemetry("mediator.send", request=request_name):
            try:
                result = await pipeline.execute(request, ctx, token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error(
                    "Unhandled fault dispatching %s (correlation_id=%s)",
                    request_name,
                    ctx.correlation_id,
                    exc_info=True,
                )
                result = Failure(
                    MediatorError.from_exception(
                        ErrorCodes.PIPELINE_EXCEPTION,
                        exc,
                        f"Unexpected exception dispatching {request_name}: {exc}",
                        details={"request": request_name},
                    )
                )
        if isinstance(result, Failure):
            telemetry.count("mediator.error", code=result.error.code)
            log.debug(
                "%s failed with %s (correlation_id=%s)",
                request_name,
                result.error.code,
                ctx.correlation_id,
            )
        return result

    async def publish(
        self,
        notification: Any,
        *,
        context: RequestContext | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Result[None, MediatorError]:
        """Deliver *notification* to every registered handler in order.

        Zero handlers is a success. The first failing handler stops delivery
        and its error is returned.
        """
        if notification is None:
            return self._fail(
                MediatorError.create(
                    ErrorCodes.NOTIFICATION_NULL, "Notification must not be None."
                )
            )
        token = cancellation or CancellationToken.none()
        ctx = context or RequestContext.create()
        name = type(notification).__qualname__
        if token.is_cancelled:
            return self._fail(
                MediatorError.create(
                    ErrorCodes.NOTIFICATION_CANCELLED,
                    f"Notification {name} was cancelled before dispatch.",
                    details={"notification": name},
                )
            )
        handlers = self.registry.notification_handlers_for(type(notification))
        if not handlers:
            log.debug("No handlers for notification %s", name)
            return Success(None)

        telemetry = TelemetryContext(*self._reporters)
        with telemetry("mediator.publish", notification=name, handlers=len(handlers)):
            for handler in handlers:
                result = await run_stage(
                    Stage.NOTIFICATION,
                    handler,
                    notification,
                    token,
                    lambda handler=handler: handler.handle(notification, ctx, token),
                )
                if isinstance(result, Failure):
                    telemetry.count("mediator.error", code=result.error.code)
                    log.debug(
                        "Notification handler %s failed for %s with %s; "
                        "skipping remaining handlers (correlation_id=%s)",
                        component_name(handler),
                        name,
                        result.error.code,
                        ctx.correlation_id,
                    )
                    return result
        return Success(None)

    @staticmethod
    def _fail(error: MediatorError) -> Failure[MediatorError]:
        log.warning("Dispatch rejected: %s", error)
        return Failure(error)


def create_mediator(registry: HandlerRegistry | None = None) -> Mediator:
    """Create a mediator over *registry* (or an empty one)."""
    return Mediator(registry)
