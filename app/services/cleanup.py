"""Periodic purge of location records past the retention window."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.services.store import LocationStore

logger = logging.getLogger(__name__)


class CleanupService:
    """
    Background task that deletes location records older than max_age_seconds.

    Key pairs are never purged; they live until the sender replaces them.
    """

    def __init__(
        self,
        store: LocationStore,
        max_age_seconds: float,
        interval_seconds: float,
    ) -> None:
        self._store = store
        self._max_age = timedelta(seconds=max_age_seconds)
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._purged_total = 0

    async def start(self) -> None:
        """Start the purge loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="location-cleanup")
            logger.info("CleanupService started")

    async def stop(self) -> None:
        """Cancel the purge loop and log stats."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"CleanupService stopped - purged {self._purged_total} records")

    async def purge_once(self, now: Optional[datetime] = None) -> int:
        """Delete expired location records once. Returns the number deleted."""
        now = now or datetime.now(timezone.utc)
        purged = await self._store.purge_locations_older_than(now - self._max_age)
        if purged:
            self._purged_total += purged
            logger.info(f"Purged {purged} expired location records")
        return purged

    @property
    def stats(self) -> dict:
        return {"purged_total": self._purged_total, "running": self._task is not None}

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.purge_once()
            except Exception as e:
                # Keep the loop alive; the next tick retries
                logger.warning(f"Location cleanup failed: {type(e).__name__}: {e}")
