"""Explicit message type registry and payload codecs.

Persisted messages carry a string discriminator instead of a runtime type.
``MessageTypeRegistry`` maps each discriminator to a pydantic ``TypeAdapter``
filled at startup; replay never resolves names dynamically.

``ResponseEnvelope`` stores a pipeline outcome as JSON
(``{"is_success": true, "value": ...}`` or ``{"is_success": false, "error":
{...}}``) so a cached failure replays as the same ``MediatorError``.
"""

from __future__ import annotations

from functools import cache
import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from pydantic import PydanticSchemaGenerationError, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from castor.core.mediator_error import MediatorError
from castor.core.requests import message_type_name
from castor.core.result_primitives import Failure, Success
from castor.errors import SerializationError, TypeResolutionError, ValidationError

if TYPE_CHECKING:
    from castor.core.result_primitives import Result

log = logging.getLogger(__name__)


@cache
def _adapter(tp: Any) -> TypeAdapter[Any]:
    return TypeAdapter(tp)


def dump_json(value: Any, tp: Any = Any) -> str:
    """Serialize *value* as JSON text through a cached ``TypeAdapter``."""
    try:
        return _adapter(tp).dump_json(value).decode()
    except (PydanticSerializationError, PydanticSchemaGenerationError) as e:
        raise SerializationError(
            f"Cannot serialize {type(value).__qualname__}: {e}"
        ) from e


class MessageTypeRegistry:
    """Discriminator -> type adapter map populated at startup."""

    def __init__(self) -> None:
        self._types: dict[str, type] = {}
        self._names: dict[type, str] = {}
        self._lock = threading.Lock()

    def register(self, message_type: type, name: str | None = None) -> str:
        """Register *message_type* under *name* (default ``module.QualName``).

        Re-registering the same pair is a no-op; reusing a name for a
        different type raises ``ValidationError``.
        """
        discriminator = name or message_type_name(message_type)
        if not discriminator.strip():
            raise ValidationError("Message type name must not be blank")
        # Fail at startup, not at replay, when a type has no pydantic schema
        try:
            _adapter(message_type)
        except PydanticSchemaGenerationError as e:
            raise SerializationError(
                f"{message_type.__qualname__} cannot be serialized: {e}",
                hint="Use a dataclass, TypedDict or pydantic model for messages.",
            ) from e
        with self._lock:
            existing = self._types.get(discriminator)
            if existing is not None and existing is not message_type:
                raise ValidationError(
                    f"Message type name {discriminator!r} is already registered "
                    f"for {existing.__qualname__}"
                )
            self._types[discriminator] = message_type
            self._names[message_type] = discriminator
        log.debug("Registered message type %s", discriminator)
        return discriminator

    def register_all(self, *message_types: type) -> MessageTypeRegistry:
        for message_type in message_types:
            self.register(message_type)
        return self

    def is_registered(self, name: str) -> bool:
        return name in self._types

    def resolve(self, name: str) -> type:
        try:
            return self._types[name]
        except KeyError:
            raise TypeResolutionError(name) from None

    def name_for(self, message: object) -> str:
        """Discriminator of *message*'s type; unregistered types raise."""
        cls = type(message)
        try:
            return self._names[cls]
        except KeyError:
            raise TypeResolutionError(message_type_name(cls)) from None

    def serialize(self, message: object) -> tuple[str, str]:
        """Return ``(discriminator, json_payload)`` for a registered message."""
        name = self.name_for(message)
        return name, dump_json(message, self._types[name])

    def deserialize(self, name: str, payload: str | bytes) -> Any:
        """Rebuild a message from its discriminator and JSON payload.

        Raises:
            TypeResolutionError: *name* is not registered.
            SerializationError: The payload does not validate against the type.
        """
        message_type = self.resolve(name)
        try:
            return _adapter(message_type).validate_json(payload)
        except PydanticValidationError as e:
            raise SerializationError(
                f"Payload for {name!r} failed validation: {e.error_count()} error(s)"
            ) from e


class ResponseEnvelope:
    """JSON codec for cached pipeline outcomes."""

    @staticmethod
    def encode(result: Result[Any, MediatorError]) -> str:
        if isinstance(result, Success):
            return json.dumps(
                {"is_success": True, "value": json.loads(dump_json(result.value))}
            )
        return json.dumps(
            {
                "is_success": False,
                "error": json.loads(dump_json(result.error.to_dict())),
            }
        )

    @staticmethod
    def decode(
        payload: str, response_type: Any = Any
    ) -> Result[Any, MediatorError]:
        """Rebuild the outcome; success values are validated as *response_type*."""
        try:
            data = json.loads(payload)
            if data["is_success"]:
                return Success(_adapter(response_type).validate_python(data["value"]))
            error = data["error"]
            return Failure(
                MediatorError.create(
                    error["code"],
                    error.get("message", ""),
                    details=error.get("details") or {},
                )
            )
        except (json.JSONDecodeError, KeyError, TypeError, PydanticValidationError) as e:
            raise SerializationError(f"Cached response is not a valid envelope: {e}") from e
