"""Message type registry and response envelope codec."""

from __future__ import annotations

import json

import pytest

from castor.core.mediator_error import MediatorError
from castor.core.result_primitives import Failure, Success
from castor.errors import SerializationError, TypeResolutionError, ValidationError
from castor.messaging.serialization import MessageTypeRegistry, ResponseEnvelope
from tests.helpers import OrderPlaced, Ping, Receipt, Unregistered

pytestmark = pytest.mark.unit


class Opaque:
    """A type pydantic has no schema for."""


class TestMessageTypeRegistry:
    def test_round_trips_registered_message(self, types: MessageTypeRegistry) -> None:
        name, payload = types.serialize(OrderPlaced("o-1"))
        assert name == "tests.helpers.OrderPlaced"
        assert json.loads(payload) == {"order_id": "o-1"}
        assert types.deserialize(name, payload) == OrderPlaced("o-1")

    def test_custom_discriminator(self) -> None:
        types = MessageTypeRegistry()
        assert types.register(OrderPlaced, "orders.placed.v1") == "orders.placed.v1"
        assert types.serialize(OrderPlaced("o"))[0] == "orders.placed.v1"
        assert types.resolve("orders.placed.v1") is OrderPlaced
        assert types.is_registered("orders.placed.v1")

    def test_unknown_names_and_types_raise(self, types: MessageTypeRegistry) -> None:
        with pytest.raises(TypeResolutionError) as exc:
            types.deserialize("nope.Missing", "{}")
        assert exc.value.type_name == "nope.Missing"
        with pytest.raises(TypeResolutionError):
            types.serialize(Unregistered(1))

    def test_invalid_payload_raises_serialization_error(
        self, types: MessageTypeRegistry
    ) -> None:
        with pytest.raises(SerializationError, match="failed validation"):
            types.deserialize("tests.helpers.OrderPlaced", '{"wrong": 1}')

    def test_name_reuse_for_another_type_is_rejected(self) -> None:
        types = MessageTypeRegistry()
        types.register(OrderPlaced, "shared")
        types.register(OrderPlaced, "shared")
        with pytest.raises(ValidationError, match="already registered"):
            types.register(Ping, "shared")

    def test_blank_name_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MessageTypeRegistry().register(OrderPlaced, "  ")

    def test_types_without_a_schema_fail_at_registration(self) -> None:
        with pytest.raises(SerializationError) as exc:
            MessageTypeRegistry().register(Opaque)
        assert exc.value.hint is not None


class TestResponseEnvelope:
    def test_success_round_trip_with_typed_value(self) -> None:
        encoded = ResponseEnvelope.encode(Success(Receipt("ch_1", 10)))
        assert json.loads(encoded) == {
            "is_success": True,
            "value": {"charge_id": "ch_1", "amount": 10},
        }
        assert ResponseEnvelope.decode(encoded, Receipt) == Success(Receipt("ch_1", 10))

    def test_failure_round_trip_keeps_code_message_and_details(self) -> None:
        error = MediatorError.create(
            "payments.declined", "Card declined", details={"reason": "funds"}
        )
        decoded = ResponseEnvelope.decode(ResponseEnvelope.encode(Failure(error)))
        assert decoded == Failure(error)
        assert isinstance(decoded, Failure)
        assert decoded.error.cause is None

    def test_none_value(self) -> None:
        encoded = ResponseEnvelope.encode(Success(None))
        assert ResponseEnvelope.decode(encoded, None) == Success(None)

    @pytest.mark.parametrize(
        "payload", ["not json", '{"value": 1}', '{"is_success": false}', "[]"]
    )
    def test_malformed_envelopes_raise(self, payload: str) -> None:
        with pytest.raises(SerializationError):
            ResponseEnvelope.decode(payload)

    def test_unserializable_value_raises(self) -> None:
        with pytest.raises(SerializationError):
            ResponseEnvelope.encode(Success(Opaque()))
