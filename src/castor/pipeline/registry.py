"""Handler resolution owned by a single mediator instance.

Exactly one handler per request type and zero or more per notification type.
Resolution walks the message class MRO so a handler registered for a base
class serves its subclasses. Resolved pipelines are memoized per concrete
request type; the memo is filled lazily and guarded for concurrent first use.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from ._recover import require_async
from .builder import RequestPipeline

if TYPE_CHECKING:
    from .base import (
        NotificationHandler,
        PipelineBehavior,
        PostProcessor,
        PreProcessor,
        RequestHandler,
    )

log = logging.getLogger(__name__)


class HandlerRegistry:
    """Maps message types to handlers and owns the pipeline memo."""

    def __init__(self) -> None:
        self._request_handlers: dict[type, RequestHandler[Any, Any]] = {}
        self._notification_handlers: dict[type, list[NotificationHandler[Any]]] = {}
        self._behaviors: list[PipelineBehavior] = []
        self._pre_processors: list[PreProcessor] = []
        self._post_processors: list[PostProcessor] = []
        self._pipelines: dict[type, RequestPipeline | None] = {}
        self._lock = threading.Lock()

    # --- Registration ---

    def register_handler(
        self, request_type: type, handler: RequestHandler[Any, Any]
    ) -> HandlerRegistry:
        """Register the single handler for *request_type*."""
        require_async(handler, "handle")
        with self._lock:
            existing = self._request_handlers.get(request_type)
            if existing is not None and existing is not handler:
                raise ValueError(
                    f"A handler for {request_type.__qualname__} is already registered "
                    f"({type(existing).__qualname__})"
                )
            self._request_handlers[request_type] = handler
            self._pipelines.clear()
        return self

    def register_notification_handler(
        self, notification_type: type, handler: NotificationHandler[Any]
    ) -> HandlerRegistry:
        """Append a handler for *notification_type* (registration order is kept)."""
        require_async(handler, "handle")
        with self._lock:
            self._notification_handlers.setdefault(notification_type, []).append(
                handler
            )
        return self

    def add_behavior(self, behavior: PipelineBehavior) -> HandlerRegistry:
        require_async(behavior, "handle")
        with self._lock:
            self._behaviors.append(behavior)
            self._pipelines.clear()
        return self

    def add_pre_processor(self, processor: PreProcessor) -> HandlerRegistry:
        require_async(processor, "process")
        with self._lock:
            self._pre_processors.append(processor)
            self._pipelines.clear()
        return self

    def add_post_processor(self, processor: PostProcessor) -> HandlerRegistry:
        require_async(processor, "process")
        with self._lock:
            self._post_processors.append(processor)
            self._pipelines.clear()
        return self

    # --- Resolution ---

    def pipeline_for(self, request_type: type) -> RequestPipeline | None:
        """Return the memoized pipeline for *request_type*, or None without a handler."""
        try:
            return self._pipelines[request_type]
        except KeyError:
            pass
        with self._lock:
            if request_type in self._pipelines:
                return self._pipelines[request_type]
            handler = self._find_handler(request_type)
            pipeline = (
                None
                if handler is None
                else RequestPipeline(
                    handler=handler,
                    behaviors=tuple(self._behaviors),
                    pre_processors=tuple(self._pre_processors),
                    post_processors=tuple(self._post_processors),
                )
            )
            self._pipelines[request_type] = pipeline
            log.debug(
                "Resolved pipeline for %s: %s",
                request_type.__qualname__,
                pipeline.stage_names if pipeline else "<no handler>",
            )
            return pipeline

    def notification_handlers_for(
        self, notification_type: type
    ) -> tuple[NotificationHandler[Any], ...]:
        """All handlers registered for *notification_type* or any of its bases."""
        with self._lock:
            found: list[NotificationHandler[Any]] = []
            for cls in notification_type.__mro__:
                for handler in self._notification_handlers.get(cls, ()):
                    if not any(h is handler for h in found):
                        found.append(handler)
            return tuple(found)

    def has_handler(self, request_type: type) -> bool:
        return self.pipeline_for(request_type) is not None

    def _find_handler(self, request_type: type) -> RequestHandler[Any, Any] | None:
        for cls in request_type.__mro__:
            handler = self._request_handlers.get(cls)
            if handler is not None:
                return handler
        return None
