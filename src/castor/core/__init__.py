"""Message contracts, results, errors, context and clocks."""

from .cancellation import CancellationToken
from .clock import SYSTEM_CLOCK, Clock, FrozenClock, SystemClock, new_id
from .context import RequestContext
from .mediator_error import ErrorCodes, MediatorError
from .requests import (
    HasNotifications,
    IdempotentRequest,
    Notification,
    Request,
    message_type_name,
    response_type_of,
)
from .result_primitives import (
    Failure,
    Result,
    Success,
    bind,
    is_result,
    map_failure,
    map_success,
    match,
    unwrap_or,
)

__all__ = [
    "SYSTEM_CLOCK",
    "CancellationToken",
    "Clock",
    "ErrorCodes",
    "Failure",
    "FrozenClock",
    "HasNotifications",
    "IdempotentRequest",
    "MediatorError",
    "Notification",
    "Request",
    "RequestContext",
    "Result",
    "Success",
    "SystemClock",
    "bind",
    "is_result",
    "map_failure",
    "map_success",
    "match",
    "message_type_name",
    "new_id",
    "response_type_of",
    "unwrap_or",
]
