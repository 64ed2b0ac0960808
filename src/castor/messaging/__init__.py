"""Reliability patterns layered on the mediator pipeline."""

from .serialization import MessageTypeRegistry, ResponseEnvelope
from .worker import PollingWorker

__all__ = ["MessageTypeRegistry", "PollingWorker", "ResponseEnvelope"]
