"""Retention sweep removing expired inbox records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from castor.messaging.worker import PollingWorker

if TYPE_CHECKING:
    from castor.config import InboxOptions

    from .store import InboxStore

log = logging.getLogger(__name__)


class InboxPurger:
    """Deletes records whose ``expires_at`` has passed, in batches."""

    def __init__(self, store: InboxStore, options: InboxOptions) -> None:
        self.store = store
        self.options = options

    async def purge_once(self) -> int:
        """Remove every currently expired record; returns the number removed."""
        removed = 0
        while True:
            expired = await self.store.get_expired(self.options.purge_batch_size)
            if not expired:
                break
            await self.store.remove_expired(m.message_id for m in expired)
            removed += len(expired)
            if len(expired) < self.options.purge_batch_size:
                break
        if removed:
            log.info("Purged %s expired inbox record(s)", removed)
        return removed

    def worker(self) -> PollingWorker:
        return PollingWorker("inbox-purge", self.purge_once, self.options.purge_interval)
