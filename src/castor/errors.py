"""Exception hierarchy for Castor.

Exceptions cover input errors and infrastructure misuse. Functional failures
never raise: they travel as ``Failure(MediatorError)`` values through the
pipeline (see ``castor.core.mediator_error``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        msg = super().__str__()
        return f"{msg}. {self.hint}" if self.hint else msg


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class ValidationError(CastorError):
    """An argument was rejected before any I/O happened."""


class OperationCancelledError(CastorError):
    """A cooperative cancellation signal was observed."""

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)


class TypeResolutionError(CastorError):
    """A message type discriminator has no registered deserializer."""

    def __init__(self, type_name: str) -> None:
        super().__init__(
            f"Message type not registered: {type_name!r}",
            hint="Register the type with MessageTypeRegistry.register() at startup.",
        )
        self.type_name = type_name


class SerializationError(CastorError):
    """A payload could not be serialized or deserialized."""


class StoreError(CastorError):
    """A persistence store rejected an operation (e.g. duplicate id)."""


class InvalidStateTransitionError(CastorError):
    """A saga state change violates the status machine."""

    def __init__(self, saga_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Saga {saga_id} cannot move from {current} to {target}",
            hint=(
                "Running may move to Compensating, Completed, Failed or TimedOut; "
                "Compensating to Compensated, Failed or TimedOut; "
                "terminal states never change"
            ),
        )
        self.saga_id = saga_id
        self.current = current
        self.target = target


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
