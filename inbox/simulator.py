"""
Demo status progression.

Periodically advances messages the way a real recipient's phone would:
sent messages older than 10 seconds become delivered, delivered messages
untouched for 30 seconds become read. Every change goes through the same
StatusTransitionApplier as the webhook path.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from inbox.errors import StoreUnavailable
from inbox.storage import MessageStore, utcnow
from inbox.transitions import StatusTransitionApplier

logger = logging.getLogger(__name__)

DELIVERED_AFTER = timedelta(seconds=10)
READ_AFTER = timedelta(seconds=30)
DELIVERED_BATCH = 5
READ_BATCH = 3


class StatusSimulator:
    """Optional background task driving demo status transitions."""

    def __init__(self, store: MessageStore, applier: StatusTransitionApplier, interval_seconds: float = 15.0):
        self.store = store
        self.applier = applier
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        """
        Advance one batch of messages.

        Returns:
            Number of transitions applied
        """
        now = utcnow()
        applied = 0

        for message in await self.store.find_by_status("sent", now - DELIVERED_AFTER, DELIVERED_BATCH):
            result = await self.applier.apply(message.external_message_id, "delivered")
            applied += result.applied

        for message in await self.store.find_by_status(
            "delivered", now - READ_AFTER, READ_BATCH, field="record_updated_at"
        ):
            result = await self.applier.apply(message.external_message_id, "read")
            applied += result.applied

        if applied:
            logger.info(f"Status simulation advanced {applied} message(s)")
        return applied

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except StoreUnavailable as e:
                logger.error(f"Error in status progression simulation: {e}")

    def start(self) -> None:
        if self._task is None:
            logger.info(f"Starting status simulation every {self.interval_seconds}s")
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
