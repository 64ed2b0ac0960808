"""Cooperative cancellation threaded through every pipeline stage.

Task cancellation (``asyncio.CancelledError``) still propagates normally. A
token is the caller's way to ask a dispatch to stop and get a ``*.cancelled``
error value back instead.
"""

from __future__ import annotations

import asyncio

from castor.errors import OperationCancelledError


class CancellationToken:
    """A one-shot cancellation flag that stages may poll or await."""

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``OperationCancelledError`` once the token is cancelled."""
        if self._event.is_set():
            raise OperationCancelledError(self._reason or "Operation was cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    @classmethod
    def none(cls) -> CancellationToken:
        """Return the shared never-cancelled token."""
        return _NONE


class _NeverCancelled(CancellationToken):
    """Shared token for callers that do not cancel."""

    __slots__ = ()

    def cancel(self, reason: str | None = None) -> None:  # noqa: ARG002
        raise RuntimeError("CancellationToken.none() cannot be cancelled")


_NONE = _NeverCancelled()
