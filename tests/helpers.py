"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: messages and recording participants
shared by the unit, integration and contract suites.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from castor.core.mediator_error import MediatorError
from castor.core.requests import IdempotentRequest, Notification, Request
from castor.core.result_primitives import Failure, Success

# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class Ping(Request[str]):
    text: str


@dataclass(frozen=True)
class OrderPlaced(Notification):
    order_id: str


@dataclass(frozen=True)
class OrderShipped(Notification):
    order_id: str


@dataclass(frozen=True)
class PlaceOrder(Request[str]):
    order_id: str

    def get_notifications(self) -> tuple[Notification, ...]:
        return (OrderPlaced(self.order_id), OrderShipped(self.order_id))


@dataclass(frozen=True)
class Receipt:
    charge_id: str
    amount: int


@dataclass(frozen=True)
class ChargeCard(Request[Receipt], IdempotentRequest):
    card: str
    amount: int


@dataclass(frozen=True)
class SendReminder(Request[None]):
    user: str


@dataclass(frozen=True)
class Unregistered(Notification):
    value: int


MESSAGE_TYPES: tuple[type, ...] = (
    Ping,
    PlaceOrder,
    OrderPlaced,
    OrderShipped,
    ChargeCard,
    SendReminder,
)


def rejected(code: str = "orders.rejected", message: str = "Rejected") -> MediatorError:
    return MediatorError.create(code, message, details={"reason": "test"})


# =============================================================================
# Handlers
# =============================================================================


@dataclass
class EchoHandler:
    """Answers ``Ping`` with ``pong:<text>``."""

    calls: list[Any] = field(default_factory=list)

    async def handle(self, request, context, cancellation):
        self.calls.append(request)
        return Success(f"pong:{request.text}")


@dataclass
class ScriptedHandler:
    """Returns (or raises) the scripted outcomes in order, then ``Success(default)``."""

    script: list[Any] = field(default_factory=list)
    default: Any = "ok"
    calls: list[Any] = field(default_factory=list)

    async def handle(self, request, context, cancellation):
        self.calls.append(request)
        if not self.script:
            return Success(self.default)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@dataclass
class ChargeHandler:
    """Issues a receipt numbered by call count."""

    calls: int = 0

    async def handle(self, request, context, cancellation):
        self.calls += 1
        return Success(Receipt(charge_id=f"ch_{self.calls}", amount=request.amount))


class SyncHandler:
    def handle(self, request, context, cancellation):
        return Success(None)


# =============================================================================
# Behaviors and processors
# =============================================================================


@dataclass
class RecordingBehavior:
    """Appends ``<name>:before``/``<name>:after`` around the rest of the chain."""

    name: str
    events: list[str]

    async def handle(self, request, context, next_step, cancellation):
        self.events.append(f"{self.name}:before")
        result = await next_step()
        self.events.append(f"{self.name}:after")
        return result


@dataclass
class FailingBehavior:
    """Short-circuits with *error* without calling the rest of the chain."""

    name: str
    events: list[str]
    error: MediatorError = field(default_factory=rejected)

    async def handle(self, request, context, next_step, cancellation):
        self.events.append(f"{self.name}:fail")
        return Failure(self.error)


@dataclass
class RaisingBehavior:
    exc: Exception = field(default_factory=lambda: RuntimeError("behavior boom"))

    async def handle(self, request, context, next_step, cancellation):
        raise self.exc


@dataclass
class RecordingPreProcessor:
    events: list[str]
    error: MediatorError | None = None

    async def process(self, request, context, cancellation):
        self.events.append("pre")
        return self.error


@dataclass
class RecordingPostProcessor:
    events: list[str]
    error: MediatorError | None = None
    seen: list[Any] = field(default_factory=list)

    async def process(self, request, context, result, cancellation):
        self.events.append("post")
        self.seen.append(result)
        return self.error


# =============================================================================
# Notification handlers
# =============================================================================


@dataclass
class RecordingNotificationHandler:
    """Records notifications; fails the first ``fail_times`` deliveries."""

    name: str = "handler"
    events: list[str] = field(default_factory=list)
    fail_times: int = 0
    raises: bool = False
    received: list[Any] = field(default_factory=list)

    async def handle(self, notification, context, cancellation):
        self.events.append(self.name)
        if self.raises:
            raise RuntimeError(f"{self.name} exploded")
        if self.fail_times > 0:
            self.fail_times -= 1
            return Failure(rejected("delivery.failed", f"{self.name} unavailable"))
        self.received.append(notification)
        return Success(None)
