"""Stage-boundary safety net (internal).

Every pipeline stage runs through :func:`run_stage`, which converts any
exception escaping the stage into a ``Failure`` carrying a reserved error
code. This is the only place faults become error values; behaviors and
handlers never repeat it.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import inspect
import logging
from typing import TYPE_CHECKING, Any

from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.result_primitives import Failure, Success, is_result
from castor.errors import OperationCancelledError, walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.core.cancellation import CancellationToken
    from castor.core.result_primitives import Result

log = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stage kinds, used for error codes and details."""

    PREPROCESSOR = "preprocessor"
    BEHAVIOR = "behavior"
    HANDLER = "handler"
    POSTPROCESSOR = "postprocessor"
    NOTIFICATION = "notification"


_CODES: dict[Stage, tuple[str, str]] = {
    Stage.PREPROCESSOR: (
        ErrorCodes.PREPROCESSOR_CANCELLED,
        ErrorCodes.PREPROCESSOR_EXCEPTION,
    ),
    Stage.BEHAVIOR: (ErrorCodes.BEHAVIOR_CANCELLED, ErrorCodes.BEHAVIOR_EXCEPTION),
    Stage.HANDLER: (ErrorCodes.HANDLER_CANCELLED, ErrorCodes.HANDLER_EXCEPTION),
    Stage.POSTPROCESSOR: (
        ErrorCodes.POSTPROCESSOR_CANCELLED,
        ErrorCodes.POSTPROCESSOR_EXCEPTION,
    ),
    Stage.NOTIFICATION: (
        ErrorCodes.NOTIFICATION_CANCELLED,
        ErrorCodes.NOTIFICATION_EXCEPTION,
    ),
}


def component_name(component: object) -> str:
    """Readable name for a handler/behavior instance or callable."""
    if inspect.isfunction(component) or inspect.ismethod(component):
        return component.__qualname__
    return type(component).__qualname__


def require_async(component: object, method: str) -> None:
    """Reject components whose *method* is not an ``async def``."""
    fn = getattr(component, method, None)
    if not callable(fn):
        raise TypeError(
            f"{component_name(component)} must define an async '{method}' method"
        )
    if not inspect.iscoroutinefunction(fn):
        raise TypeError(
            f"{component_name(component)}.{method} must be an async coroutine function"
        )


def _is_cancellation(exc: BaseException) -> bool:
    return any(isinstance(e, OperationCancelledError) for e in walk_exception_chain(exc))


def _details(stage: Stage, component: object, message: object) -> dict[str, Any]:
    return {
        "stage": stage.value,
        stage.value: component_name(component),
        "request": type(message).__qualname__,
    }


def cancelled_error(
    stage: Stage,
    component: object,
    message: object,
    exc: BaseException | None = None,
) -> MediatorError:
    """Build the stage-specific ``*.cancelled`` error."""
    code = _CODES[stage][0]
    return MediatorError.create(
        code,
        f"{stage.value.capitalize()} {component_name(component)} was cancelled "
        f"while processing {type(message).__qualname__}.",
        cause=exc,
        details=_details(stage, component, message),
    )


async def run_stage(
    stage: Stage,
    component: object,
    message: object,
    cancellation: CancellationToken,
    call: Callable[[], Awaitable[Result[Any, MediatorError]]],
) -> Result[Any, MediatorError]:
    """Run one stage and fold faults, cancellation and bad returns into ``Failure``."""
    if cancellation.is_cancelled:
        return Failure(cancelled_error(stage, component, message))
    try:
        outcome = await call()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        if cancellation.is_cancelled or _is_cancellation(exc):
            return Failure(cancelled_error(stage, component, message, exc))
        details = _details(stage, component, message)
        details["exception_type"] = f"{type(exc).__module__}.{type(exc).__qualname__}"
        log.debug(
            "Stage %s (%s) raised %s",
            stage.value,
            component_name(component),
            type(exc).__name__,
            exc_info=True,
        )
        return Failure(
            MediatorError.from_exception(
                _CODES[stage][1],
                exc,
                f"Unexpected exception in {stage.value} {component_name(component)} "
                f"for {type(message).__qualname__}: {exc}",
                details=details,
            )
        )
    if not is_result(outcome):
        return Failure(
            MediatorError.create(
                ErrorCodes.HANDLER_INVALID_RESULT,
                f"{component_name(component)} returned {type(outcome).__qualname__}; "
                "expected Success or Failure.",
                details=_details(stage, component, message),
            )
        )
    return outcome


async def run_processor(
    stage: Stage,
    component: object,
    message: object,
    cancellation: CancellationToken,
    call: Callable[[], Awaitable[MediatorError | None]],
) -> MediatorError | None:
    """Run a pre/post processor; ``None`` means carry on."""

    async def _as_result() -> Result[None, MediatorError]:
        error = await call()
        if error is None:
            return Success(None)
        if not isinstance(error, MediatorError):
            raise TypeError(
                f"{component_name(component)} returned {type(error).__qualname__}; "
                "expected MediatorError or None."
            )
        return Failure(error)

    result = await run_stage(stage, component, message, cancellation, _as_result)
    return result.error if isinstance(result, Failure) else None


__all__ = ()  # internal-only
