"""Result primitives and the MediatorError value."""

from __future__ import annotations

import pytest

from castor.core.mediator_error import ErrorCodes, MediatorError
from castor.core.result_primitives import (
    Failure,
    Success,
    bind,
    is_result,
    map_failure,
    map_success,
    match,
    unwrap_or,
)
from castor.errors import (
    CastorError,
    InvalidStateTransitionError,
    TypeResolutionError,
    walk_exception_chain,
)

pytestmark = pytest.mark.unit


class TestResultCombinators:
    def test_map_success_transforms_only_success(self) -> None:
        assert map_success(Success(2), lambda v: v * 10) == Success(20)
        failure = Failure("nope")
        assert map_success(failure, lambda v: v * 10) is failure

    def test_map_failure_transforms_only_failure(self) -> None:
        assert map_failure(Failure("x"), str.upper) == Failure("X")
        ok = Success(1)
        assert map_failure(ok, str.upper) is ok

    def test_bind_short_circuits_on_failure(self) -> None:
        calls: list[int] = []

        def step(v: int):
            calls.append(v)
            return Success(v + 1)

        assert bind(Success(1), step) == Success(2)
        assert bind(Failure("stop"), step) == Failure("stop")
        assert calls == [1]

    def test_match_and_unwrap_or(self) -> None:
        assert match(Success(3), success=str, failure=lambda e: "err") == "3"
        assert match(Failure("e"), success=str, failure=lambda e: f"err:{e}") == "err:e"
        assert unwrap_or(Success(5), 0) == 5
        assert unwrap_or(Failure("e"), 0) == 0

    def test_is_result_and_flags(self) -> None:
        assert is_result(Success(None))
        assert is_result(Failure(None))
        assert not is_result(None)
        assert Success(1).is_success
        assert not Failure(1).is_success


class TestMediatorError:
    def test_details_are_read_only_and_ordered(self) -> None:
        error = MediatorError.create("a.b", "msg", details={"z": 1, "a": 2})
        assert list(error.details) == ["z", "a"]
        with pytest.raises(TypeError):
            error.details["x"] = 3  # type: ignore[index]

    def test_with_detail_returns_a_copy(self) -> None:
        error = MediatorError.create("a.b", "msg", details={"one": 1})
        extended = error.with_detail("two", 2)
        assert dict(extended.details) == {"one": 1, "two": 2}
        assert dict(error.details) == {"one": 1}

    def test_blank_code_is_rejected_and_blank_message_defaulted(self) -> None:
        with pytest.raises(ValueError, match="code"):
            MediatorError.create("  ", "msg")
        assert MediatorError.create("x.y", "").message == "An error occurred"

    def test_from_exception_keeps_cause_outside_equality(self) -> None:
        exc = RuntimeError("boom")
        error = MediatorError.from_exception(ErrorCodes.HANDLER_EXCEPTION, exc)
        assert error.cause is exc
        assert error.message == "boom"
        assert error == MediatorError.create(ErrorCodes.HANDLER_EXCEPTION, "boom")

    def test_to_dict_and_str(self) -> None:
        error = MediatorError.create("x.y", "Broken", details={"k": "v"})
        assert error.to_dict() == {"code": "x.y", "message": "Broken", "details": {"k": "v"}}
        assert str(error) == "[x.y] Broken"

    @pytest.mark.parametrize(
        ("code", "fault", "cancelled"),
        [
            (ErrorCodes.HANDLER_EXCEPTION, True, False),
            (ErrorCodes.PIPELINE_EXCEPTION, True, False),
            (ErrorCodes.HANDLER_INVALID_RESULT, True, False),
            (ErrorCodes.BEHAVIOR_CANCELLED, False, True),
            (ErrorCodes.REQUEST_CANCELLED, False, True),
            (ErrorCodes.HANDLER_MISSING, False, False),
            ("orders.rejected", False, False),
        ],
    )
    def test_code_classification(self, code: str, fault: bool, cancelled: bool) -> None:
        assert ErrorCodes.is_fault(code) is fault
        assert ErrorCodes.is_cancellation(code) is cancelled


class TestExceptions:
    def test_hint_is_appended_to_message(self) -> None:
        err = CastorError("Bad thing", hint="Do this instead")
        assert str(err) == "Bad thing. Do this instead"
        assert CastorError("Plain").hint is None

    def test_type_resolution_error_names_the_type(self) -> None:
        err = TypeResolutionError("orders.Placed")
        assert err.type_name == "orders.Placed"
        assert "MessageTypeRegistry" in (err.hint or "")

    def test_invalid_transition_carries_states(self) -> None:
        err = InvalidStateTransitionError("s1", "Completed", "Running")
        assert (err.saga_id, err.current, err.target) == ("s1", "Completed", "Running")

    def test_walk_exception_chain_handles_cycles(self) -> None:
        inner = ValueError("inner")
        outer = RuntimeError("outer")
        outer.__cause__ = inner
        inner.__context__ = outer
        assert list(walk_exception_chain(outer)) == [outer, inner]
