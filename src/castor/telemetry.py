"""Telemetry for dispatch and background processing.

Off unless ``CASTOR_TELEMETRY=1``. While off, ``TelemetryContext()`` returns
one shared inert object, so instrumented code costs a call and an empty
``with`` block. While on, every scope is timed and every counter is
forwarded to the configured reporters under a dotted path built from the
enclosing scopes (``mediator.send.inbox.hit``).

Reporters are plain objects with ``record_timing`` and ``record_metric``.
A reporter that raises is logged and skipped; it never breaks a dispatch.
"""

from collections import deque
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from contextvars import ContextVar
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)

_active_scopes: ContextVar[tuple[str, ...]] = ContextVar(
    "castor_telemetry_scopes", default=()
)


def telemetry_enabled() -> bool:
    """Return True when ``CASTOR_TELEMETRY`` is exactly ``"1"``."""
    return os.getenv("CASTOR_TELEMETRY") == "1"


@runtime_checkable
class TelemetryReporter(Protocol):
    """Sink for scope durations and metric values."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


def _qualified(name: str) -> str:
    return ".".join((*_active_scopes.get(), name))


class _Inert:
    """Shared context handed out while telemetry is off."""

    __slots__ = ()

    is_enabled = False

    def __call__(self, name: str, **metadata: Any) -> AbstractContextManager[None]:  # noqa: ARG002
        return nullcontext()

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        return None

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        return None


class _Recording:
    """Times nested scopes and forwards metrics to each reporter."""

    __slots__ = ("reporters",)

    is_enabled = True

    def __init__(self, reporters: tuple[TelemetryReporter, ...]) -> None:
        self.reporters = reporters

    def __call__(self, name: str, **metadata: Any) -> AbstractContextManager[None]:
        if not isinstance(name, str) or not name:
            raise ValueError("telemetry scope name must be a non-empty string")
        return self._timed(name, metadata)

    @contextmanager
    def _timed(self, name: str, metadata: dict[str, Any]) -> Iterator[None]:
        parents = _active_scopes.get()
        token = _active_scopes.set((*parents, name))
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            _active_scopes.reset(token)
            path = ".".join((*parents, name))
            details = {
                "depth": len(parents),
                "parent_scope": ".".join(parents) or None,
                **metadata,
            }
            self._fan_out(lambda r: r.record_timing(path, elapsed, **details))

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        path = _qualified(name)
        self._fan_out(lambda r: r.record_metric(path, value, **metadata))

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self.metric(name, increment, metric_type="counter", **metadata)

    def _fan_out(self, record: Callable[[TelemetryReporter], None]) -> None:
        for reporter in self.reporters:
            try:
                record(reporter)
            except Exception as exc:
                log.warning(
                    "telemetry reporter %s dropped a sample: %s",
                    type(reporter).__name__,
                    exc,
                    exc_info=True,
                )


_INERT = _Inert()

type TelemetryContextProtocol = _Recording | _Inert


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a recording context when enabled, otherwise the shared inert one.

    A recording context built without reporters records into a fresh
    ``SimpleReporter``.
    """
    if not telemetry_enabled():
        return _INERT
    return _Recording(reporters or (SimpleReporter(),))


class SimpleReporter:
    """Keeps the most recent samples per scope in memory."""

    def __init__(self, max_entries_per_scope: int = 1000) -> None:
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def _bucket(self, table: dict[str, deque], scope: str) -> deque:
        if scope not in table:
            table[scope] = deque(maxlen=self.max_entries)
        return table[scope]

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self._bucket(self.timings, scope).append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self._bucket(self.metrics, scope).append((value, metadata))

    def total(self, scope: str) -> float:
        """Sum of the numeric values recorded under *scope*."""
        samples = self.metrics.get(scope, ())
        return sum(v for v, _ in samples if isinstance(v, int | float))

    def reset(self) -> None:
        self.timings.clear()
        self.metrics.clear()
