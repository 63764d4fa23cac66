"""Periodic purge of expired authorization states and codes.

Housekeeping only: every read path re-checks entry age on its own.
"""

import asyncio
import logging
from typing import Iterable, Optional

from oauth.stores import ExpiringStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60  # seconds


class Reaper:
    def __init__(self, stores: Iterable[ExpiringStore], interval: float = DEFAULT_INTERVAL):
        self.stores = list(stores)
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, int]:
        """Purge every store once and return the counts removed per store."""
        counts = {}
        for store in self.stores:
            counts[store.name] = await store.purge_expired()
        if any(counts.values()):
            summary = ", ".join(f"{name}={n}" for name, n in counts.items())
            logger.info(f"[REAPER] Purged expired entries: {summary}")
        return counts

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop))
        logger.info(f"[REAPER] Started (interval: {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop = None
        logger.info("[REAPER] Stopped")

    async def _loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"[REAPER] Purge failed: {e}")
