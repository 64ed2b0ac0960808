"""Handler registry, pipeline contracts and the transaction behavior."""

from .base import (
    NextStep,
    NotificationHandler,
    PipelineBehavior,
    PostProcessor,
    PreProcessor,
    RequestHandler,
)
from .builder import RequestPipeline
from .registry import HandlerRegistry
from .transaction import (
    UNIT_OF_WORK,
    InMemoryUnitOfWork,
    TransactionBehavior,
    TransactionParticipant,
    UnitOfWork,
)

__all__ = [
    "UNIT_OF_WORK",
    "HandlerRegistry",
    "InMemoryUnitOfWork",
    "NextStep",
    "NotificationHandler",
    "PipelineBehavior",
    "PostProcessor",
    "PreProcessor",
    "RequestHandler",
    "RequestPipeline",
    "TransactionBehavior",
    "TransactionParticipant",
    "UnitOfWork",
]
