"""Sync scheduler.

Background asyncio task that runs an incremental sync every
``interval_seconds``. A tick that finds a run in flight is skipped, not
queued. Manual triggers go through the same orchestrator and therefore
share its single-run guard.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from core.errors import SyncInProgressError
from core.observability import get_logger
from sync.orchestrator import SyncOrchestrator
from sync.results import SyncMode, SyncRunResult, SyncTrigger

logger = get_logger(__name__)


class SyncScheduler:
    """Owns the periodic sync loop.

    Usage:
        scheduler = SyncScheduler(orchestrator, interval_seconds=86400)
        scheduler.start()          # idempotent
        await scheduler.trigger("full")
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: int = 86400,
        enabled: bool = True,
    ):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[SyncRunResult] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True while a sync run (scheduled or manual) is in flight."""
        return self.orchestrator.is_running

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the background loop. Returns False if already started or disabled."""
        if not self.enabled:
            logger.info("Sync scheduler disabled")
            return False
        if self.started:
            logger.debug("Sync scheduler already started")
            return False

        self._task = asyncio.create_task(self._loop())
        logger.info(f"Sync scheduler started, interval {self.interval_seconds}s")
        return True

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Sync scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Scheduled sync failed: {e}")

    async def tick(self) -> Optional[SyncRunResult]:
        """Run one scheduled incremental sync, or skip if one is in flight."""
        if self.is_running:
            logger.info("Skipping scheduled sync: a run is already in progress")
            return None
        try:
            return await self._run(SyncMode.INCREMENTAL, SyncTrigger.SCHEDULED)
        except SyncInProgressError:
            logger.info("Skipping scheduled sync: a run is already in progress")
            return None

    async def trigger(self, mode: Union[SyncMode, str] = SyncMode.INCREMENTAL) -> SyncRunResult:
        """Run a manual sync now.

        Raises:
            SyncInProgressError: A run is already in flight
        """
        return await self._run(SyncMode(mode), SyncTrigger.MANUAL)

    async def _run(self, mode: SyncMode, trigger: SyncTrigger) -> SyncRunResult:
        result = await self.orchestrator.run(mode, trigger)
        self.last_run_at = result.finished_at or datetime.now(timezone.utc)
        self.last_result = result
        return result

    def state(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "running": self.is_running,
            "started": self.started,
            "last_result": self.last_result.model_dump(mode="json") if self.last_result else None,
        }
