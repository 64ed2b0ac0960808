"""The error value carried by ``Failure`` results.

``MediatorError`` is immutable and created at failure points. Codes are stable
dotted identifiers; the reserved ``mediator.*`` codes are produced only by the
dispatch boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Mapping

_DEFAULT_MESSAGE: Final[str] = "An error occurred"


class ErrorCodes:
    """Reserved error codes."""

    REQUEST_NULL: Final[str] = "mediator.request.null"
    NOTIFICATION_NULL: Final[str] = "mediator.notification.null"
    HANDLER_MISSING: Final[str] = "mediator.handler.missing"
    HANDLER_INVALID_RESULT: Final[str] = "mediator.handler.invalid_result"
    HANDLER_CANCELLED: Final[str] = "mediator.handler.cancelled"
    HANDLER_EXCEPTION: Final[str] = "mediator.handler.exception"
    REQUEST_CANCELLED: Final[str] = "mediator.request.cancelled"
    BEHAVIOR_CANCELLED: Final[str] = "mediator.behavior.cancelled"
    BEHAVIOR_EXCEPTION: Final[str] = "mediator.behavior.exception"
    NOTIFICATION_CANCELLED: Final[str] = "mediator.notification.cancelled"
    NOTIFICATION_EXCEPTION: Final[str] = "mediator.notification.exception"
    PREPROCESSOR_CANCELLED: Final[str] = "mediator.preprocessor.cancelled"
    PREPROCESSOR_EXCEPTION: Final[str] = "mediator.preprocessor.exception"
    POSTPROCESSOR_CANCELLED: Final[str] = "mediator.postprocessor.cancelled"
    POSTPROCESSOR_EXCEPTION: Final[str] = "mediator.postprocessor.exception"
    PIPELINE_EXCEPTION: Final[str] = "mediator.pipeline.exception"

    INBOX_MISSING_MESSAGE_ID: Final[str] = "inbox.missing_message_id"
    INBOX_MAX_RETRIES_EXCEEDED: Final[str] = "inbox.max_retries_exceeded"
    INBOX_DESERIALIZATION_FAILED: Final[str] = "inbox.deserialization_failed"
    INBOX_IN_PROGRESS: Final[str] = "inbox.in_progress"

    OUTBOX_TYPE_NOT_REGISTERED: Final[str] = "outbox.type_not_registered"
    OUTBOX_DESERIALIZATION_FAILED: Final[str] = "outbox.deserialization_failed"

    SCHEDULING_TYPE_NOT_REGISTERED: Final[str] = "scheduling.type_not_registered"
    SCHEDULING_INVALID_CRON: Final[str] = "scheduling.invalid_cron"

    _FAULT = frozenset(
        {
            HANDLER_EXCEPTION,
            HANDLER_INVALID_RESULT,
            BEHAVIOR_EXCEPTION,
            NOTIFICATION_EXCEPTION,
            PREPROCESSOR_EXCEPTION,
            POSTPROCESSOR_EXCEPTION,
            PIPELINE_EXCEPTION,
        }
    )
    _CANCELLATION = frozenset(
        {
            REQUEST_CANCELLED,
            HANDLER_CANCELLED,
            BEHAVIOR_CANCELLED,
            NOTIFICATION_CANCELLED,
            PREPROCESSOR_CANCELLED,
            POSTPROCESSOR_CANCELLED,
        }
    )

    @classmethod
    def is_cancellation(cls, code: str) -> bool:
        """Return True for any of the ``*.cancelled`` codes."""
        return code in cls._CANCELLATION

    @classmethod
    def is_fault(cls, code: str) -> bool:
        """Return True for codes produced by converting an unexpected exception."""
        return code in cls._FAULT


def _freeze_details(details: Mapping[str, Any] | None) -> Mapping[str, Any]:
    # dict keeps insertion order; the proxy keeps it read-only
    return MappingProxyType(dict(details or {}))


@dataclass(frozen=True, slots=True)
class MediatorError:
    """Typed failure: stable code, human message, optional cause, ordered details."""

    code: str
    message: str = _DEFAULT_MESSAGE
    cause: BaseException | None = field(default=None, compare=False)
    details: Mapping[str, Any] = field(default_factory=lambda: _freeze_details(None))

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise ValueError("MediatorError.code must be a non-empty string")
        if not self.message or not self.message.strip():
            object.__setattr__(self, "message", _DEFAULT_MESSAGE)
        if not isinstance(self.details, MappingProxyType):
            object.__setattr__(self, "details", _freeze_details(self.details))

    @classmethod
    def create(
        cls,
        code: str,
        message: str,
        *,
        cause: BaseException | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> MediatorError:
        """Build an error, freezing *details* in insertion order."""
        return cls(code=code, message=message, cause=cause, details=_freeze_details(details))

    @classmethod
    def from_exception(
        cls,
        code: str,
        exc: BaseException,
        message: str | None = None,
        *,
        details: Mapping[str, Any] | None = None,
    ) -> MediatorError:
        """Wrap an exception, keeping it as ``cause``."""
        return cls.create(
            code,
            message or str(exc) or type(exc).__name__,
            cause=exc,
            details=details,
        )

    def with_detail(self, key: str, value: Any) -> MediatorError:
        """Return a copy with one more detail entry."""
        merged = dict(self.details)
        merged[key] = value
        return MediatorError.create(self.code, self.message, cause=self.cause, details=merged)

    @property
    def is_cancellation(self) -> bool:
        return ErrorCodes.is_cancellation(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping for logging and persistence (cause is not persisted)."""
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
