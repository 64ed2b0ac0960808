"""Message markers.

Requests go to exactly one handler, notifications fan out to zero or more.
Plain dataclasses or pydantic models work as messages; subclassing the
markers is what routes them.
"""

from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    TypeVar,
    get_args,
    get_origin,
    runtime_checkable,
)

if TYPE_CHECKING:
    from collections.abc import Iterable


class Request[TResponse]:
    """Marker base for commands and queries producing ``TResponse``."""

    __slots__ = ()


class Notification:
    """Marker base for domain notifications."""

    __slots__ = ()


class IdempotentRequest:
    """Mixin: deduplicate this request through the inbox by idempotency key."""

    __slots__ = ()


@runtime_checkable
class HasNotifications(Protocol):
    """Requests that emit notifications to be written to the outbox on success."""

    def get_notifications(self) -> Iterable[Notification]: ...


def message_type_name(obj: object | type) -> str:
    """Stable discriminator for a message type (``module.QualName``)."""
    cls = obj if isinstance(obj, type) else type(obj)
    return f"{cls.__module__}.{cls.__qualname__}"


def response_type_of(request_type: type) -> Any:
    """The ``TResponse`` a request class declares via ``Request[TResponse]``.

    Returns ``Any`` when the class does not parameterize ``Request``.
    """
    for cls in request_type.__mro__:
        for base in getattr(cls, "__orig_bases__", ()):
            if get_origin(base) is Request:
                args = get_args(base)
                if args and not isinstance(args[0], TypeVar):
                    return args[0]
    return Any
