"""Saga state: durable multi-step progress with compensation."""

from .models import SagaState, SagaStatus, can_transition
from .monitor import SagaMonitor
from .store import InMemorySagaStore, SagaStore

__all__ = [
    "InMemorySagaStore",
    "SagaMonitor",
    "SagaState",
    "SagaStatus",
    "SagaStore",
    "can_transition",
]
