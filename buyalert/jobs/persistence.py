"""Scheduled persistence of the settings store."""

from __future__ import annotations

import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buyalert.errors import PersistenceError
from buyalert.store.backends import SettingsBackend
from buyalert.store.settings import SettingsStore
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)

JOB_ID = "persist_settings"


class PersistenceService:
    """Periodic flush of the settings store to its backend."""

    def __init__(
        self,
        store: SettingsStore,
        backend: SettingsBackend,
        scheduler: AsyncIOScheduler,
        interval_seconds: int = 30,
    ) -> None:
        self.store = store
        self.backend = backend
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._saved_version: Optional[int] = None
        # Store version left by a failed load; never written back.
        self._unloaded_version: Optional[int] = None
        # Held for the whole save so the final flush waits for one in flight.
        self._flush_lock = asyncio.Lock()

    async def load(self) -> int:
        """Restore the store from the backend; failures leave it empty.

        After a failed load nothing is saved until the store changes, so an
        unreadable collection is not replaced by an empty one.
        """
        try:
            records = await self.backend.load()
        except PersistenceError as exc:
            logger.error("settings_load_failed", error=str(exc))
            self._unloaded_version = self.store.version
            return 0
        await self.store.restore(records)
        self._saved_version = self.store.version
        return len(records)

    def start(self) -> None:
        """Register the flush job with the scheduler."""
        self.scheduler.add_job(
            self.flush,
            trigger="interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("persistence_job_started", interval=self.interval_seconds)

    async def flush(self, force: bool = False) -> bool:
        """Save a snapshot when the store changed (or ``force``); True if saved."""
        async with self._flush_lock:
            version = self.store.version
            if version == self._unloaded_version:
                logger.warning("settings_flush_skipped", reason="load_failed")
                return False
            if not force and version == self._saved_version:
                return False
            records = await self.store.snapshot_all()
            try:
                await self.backend.save(records)
            except PersistenceError as exc:
                logger.error("settings_flush_failed", error=str(exc))
                return False
            self._saved_version = version
        logger.info("settings_flushed", count=len(records), forced=force)
        return True

    async def shutdown(self) -> None:
        """One last forced flush; never raises."""
        if self.scheduler.running and self.scheduler.get_job(JOB_ID):
            self.scheduler.remove_job(JOB_ID)
        try:
            await self.flush(force=True)
        except Exception as exc:  # pragma: no cover
            logger.error("settings_final_flush_failed", error=str(exc))
        try:
            await self.backend.close()
        except Exception as exc:  # pragma: no cover
            logger.warning("settings_backend_close_failed", error=str(exc))
