"""
Background sweep of the token blacklist, started and stopped with the app.
"""

import asyncio
import logging
from typing import Optional
from app import config
from app.services.token_service import cleanup_expired_tokens
from app.utils.logger import log_error

logger = logging.getLogger(__name__)


class TokenCleanupService:
    def __init__(self, interval_hours: float = 24):
        self.interval = interval_hours * 3600
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="token-cleanup")
        logger.info("Token cleanup scheduled every %.1f hours", self.interval / 3600)

    async def stop(self):
        if not self.running:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("Token cleanup stopped")

    async def sweep(self) -> int:
        removed = await cleanup_expired_tokens()
        if removed:
            logger.info("Removed %d expired blacklisted tokens", removed)
        return removed

    async def _loop(self):
        while not self._stop.is_set():
            try:
                await self.sweep()
            except Exception as e:
                log_error("Token cleanup sweep failed", e)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass


token_cleanup_service = TokenCleanupService(config.TOKEN_CLEANUP_INTERVAL_HOURS)


async def start_token_cleanup():
    await token_cleanup_service.start()


async def stop_token_cleanup():
    await token_cleanup_service.stop()
