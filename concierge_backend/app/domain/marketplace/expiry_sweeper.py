"""Periodic quote expiry sweep."""

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from concierge_backend.app.db.session import AsyncSessionLocal
from concierge_backend.app.domain.marketplace.quote_marketplace import QuoteMarketplace

logger = logging.getLogger(__name__)


class QuoteExpirySweeper:
    """
    Background task declining pending quotes past their expiry.

    A failed cycle is logged and the next cycle retries; nothing is raised
    to live request paths.
    """

    def __init__(self, interval_seconds: float = 60.0, session_factory: Callable = AsyncSessionLocal):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory
        self.task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        try:
            async with self.session_factory() as db:
                return await QuoteMarketplace.expire_stale_quotes(db)
        except Exception:
            logger.exception("Quote expiry sweep failed; retrying next cycle")
            return 0

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self):
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self._loop(), name="quote-expiry-sweeper")
            logger.info("Quote expiry sweeper started (every %.0fs)", self.interval_seconds)

    async def stop(self):
        if self.task:
            self.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.task
            self.task = None
