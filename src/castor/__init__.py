"""Castor: an async mediator with outbox, inbox, saga and scheduling patterns.

Public API:
    - Mediator / create_mediator(): dispatch requests and notifications
    - HandlerRegistry: handlers, behaviors and processors per message type
    - build_runtime(): wire the patterns enabled in configuration
    - resolve_config() / config_scope(): layered, immutable configuration
"""

from __future__ import annotations

import logging

from castor.config import FrozenConfig, config_scope, resolve_config
from castor.core import (
    CancellationToken,
    ErrorCodes,
    Failure,
    HasNotifications,
    IdempotentRequest,
    MediatorError,
    Notification,
    Request,
    RequestContext,
    Result,
    Success,
)
from castor.errors import (
    CastorError,
    ConfigurationError,
    InvalidStateTransitionError,
    SerializationError,
    StoreError,
    TypeResolutionError,
    ValidationError,
)
from castor.mediator import Mediator, create_mediator
from castor.messaging import MessageTypeRegistry
from castor.pipeline import HandlerRegistry
from castor.runtime import Runtime, build_runtime

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-mediator")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "CancellationToken",
    "CastorError",
    "ConfigurationError",
    "ErrorCodes",
    "Failure",
    "FrozenConfig",
    "HandlerRegistry",
    "HasNotifications",
    "IdempotentRequest",
    "InvalidStateTransitionError",
    "Mediator",
    "MediatorError",
    "MessageTypeRegistry",
    "Notification",
    "Request",
    "RequestContext",
    "Result",
    "Runtime",
    "SerializationError",
    "StoreError",
    "Success",
    "TypeResolutionError",
    "ValidationError",
    "build_runtime",
    "config_scope",
    "create_mediator",
    "resolve_config",
]
