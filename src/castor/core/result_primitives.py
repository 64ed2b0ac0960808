"""Result Monad for Robust Error Handling.

Every dispatch returns ``Success`` or ``Failure`` instead of raising. Stages
short-circuit on ``Failure``; only ``Success`` flows forward. The helpers
below keep call sites free of ``isinstance`` ladders.
"""

from __future__ import annotations

import dataclasses
import typing

if typing.TYPE_CHECKING:
    from collections.abc import Callable

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure")


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful outcome carrying the handler's value."""

    value: TSuccess

    @property
    def is_success(self) -> bool:
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed outcome carrying the error value."""

    error: TFailure

    @property
    def is_success(self) -> bool:
        return False


Result = Success[TSuccess] | Failure[TFailure]


def is_result(obj: object) -> bool:
    """Return True when *obj* is a ``Success`` or ``Failure``."""
    return isinstance(obj, Success | Failure)


def map_success[T, U, E](result: Result[T, E], fn: Callable[[T], U]) -> Result[U, E]:
    """Apply *fn* to a success value; pass failures through untouched."""
    if isinstance(result, Success):
        return Success(fn(result.value))
    return result


def map_failure[T, E, F](result: Result[T, E], fn: Callable[[E], F]) -> Result[T, F]:
    """Apply *fn* to a failure value; pass successes through untouched."""
    if isinstance(result, Failure):
        return Failure(fn(result.error))
    return result


def bind[T, U, E](
    result: Result[T, E], fn: Callable[[T], Result[U, E]]
) -> Result[U, E]:
    """Chain a Result-returning step, short-circuiting on failure."""
    if isinstance(result, Success):
        return fn(result.value)
    return result


def match[T, E, U](
    result: Result[T, E],
    *,
    success: Callable[[T], U],
    failure: Callable[[E], U],
) -> U:
    """Fold a Result into a single value."""
    if isinstance(result, Success):
        return success(result.value)
    return failure(result.error)


def unwrap_or[T, E](result: Result[T, E], default: T) -> T:
    """Return the success value or *default*."""
    if isinstance(result, Success):
        return result.value
    return default
