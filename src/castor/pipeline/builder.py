"""Composes one request's processing chain.

Order of execution::

    pre-processors -> behavior_1 -> ... -> behavior_n -> handler -> post-processors

Post-processors sit inside the behaviors, so a transaction behavior covers the
handler and whatever the post-processors persist (e.g. outbox writes). Any
``Failure`` stops the chain at once; only ``Success`` flows forward.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor.core.result_primitives import Failure

from ._recover import Stage, run_processor, run_stage

if TYPE_CHECKING:
    from castor.core.cancellation import CancellationToken
    from castor.core.context import RequestContext
    from castor.core.mediator_error import MediatorError
    from castor.core.result_primitives import Result

    from .base import (
        NextStep,
        PipelineBehavior,
        PostProcessor,
        PreProcessor,
        RequestHandler,
    )

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RequestPipeline:
    """Resolved participants for one request type (cached by the registry)."""

    handler: RequestHandler[Any, Any]
    behaviors: tuple[PipelineBehavior, ...] = ()
    pre_processors: tuple[PreProcessor, ...] = ()
    post_processors: tuple[PostProcessor, ...] = ()

    @property
    def stage_names(self) -> tuple[str, ...]:
        """Participant class names in execution order."""
        parts: list[object] = [
            *self.pre_processors,
            *self.behaviors,
            self.handler,
            *self.post_processors,
        ]
        return tuple(type(p).__name__ for p in parts)

    async def execute(
        self,
        request: Any,
        context: RequestContext,
        cancellation: CancellationToken,
    ) -> Result[Any, MediatorError]:
        """Run the full chain for *request*."""
        for pre in self.pre_processors:
            error = await run_processor(
                Stage.PREPROCESSOR,
                pre,
                request,
                cancellation,
                lambda pre=pre: pre.process(request, context, cancellation),
            )
            if error is not None:
                log.debug(
                    "Pre-processor %s short-circuited %s with %s (correlation_id=%s)",
                    type(pre).__name__,
                    type(request).__name__,
                    error.code,
                    context.correlation_id,
                )
                return Failure(error)

        return await self._build_chain(request, context, cancellation)()

    def _build_chain(
        self,
        request: Any,
        context: RequestContext,
        cancellation: CancellationToken,
    ) -> NextStep:
        async def terminal() -> Result[Any, MediatorError]:
            result = await run_stage(
                Stage.HANDLER,
                self.handler,
                request,
                cancellation,
                lambda: self.handler.handle(request, context, cancellation),
            )
            for post in self.post_processors:
                error = await run_processor(
                    Stage.POSTPROCESSOR,
                    post,
                    request,
                    cancellation,
                    lambda post=post, result=result: post.process(
                        request, context, result, cancellation
                    ),
                )
                if error is not None:
                    return Failure(error)
            return result

        current: NextStep = terminal
        # Wrap in reverse so behaviors run in registration order
        for behavior in reversed(self.behaviors):
            current = _wrap_behavior(behavior, request, context, cancellation, current)
        return current


def _wrap_behavior(
    behavior: PipelineBehavior,
    request: Any,
    context: RequestContext,
    cancellation: CancellationToken,
    next_step: NextStep,
) -> NextStep:
    async def step() -> Result[Any, MediatorError]:
        return await run_stage(
            Stage.BEHAVIOR,
            behavior,
            request,
            cancellation,
            lambda: behavior.handle(request, context, next_step, cancellation),
        )

    return step


__all__ = ("RequestPipeline",)
