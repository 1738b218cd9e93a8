"""Periodic import pass with a reentrancy guard."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mangashelf.core.importing.models import ImportPassResult
from mangashelf.core.metrics import import_passes_total

logger = structlog.get_logger("mangashelf.import_scheduler")

PassRunner = Callable[[], Awaitable[ImportPassResult]]

IMPORT_JOB_ID = "import_completed_downloads"


class ImportScheduler:
    """Runs import passes, one at a time.

    Scheduled and manual passes share one lock: a pass requested while another
    is running is skipped, never queued. Stopping waits for the pass in
    progress, so a pass is never interrupted midway.
    """

    def __init__(self, run_pass: PassRunner, interval_seconds: float = 300) -> None:
        """Initialize the scheduler.

        Args:
            run_pass: Coroutine function running one full import pass
            interval_seconds: Interval between scheduled passes
        """
        self.run_pass = run_pass
        self.interval_seconds = interval_seconds
        self.scheduler: AsyncIOScheduler | None = None
        self._guard = asyncio.Lock()

        self.last_result: ImportPassResult | None = None
        self.last_error: str | None = None
        self.last_started_at: int | None = None
        self.last_finished_at: int | None = None

    @property
    def running(self) -> bool:
        """True while a pass is in progress."""
        return self._guard.locked()

    @property
    def loop_active(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def run_once(self) -> ImportPassResult | None:
        """Run one pass unless one is already running.

        Returns:
            The pass result, or None if another pass held the guard
        """
        if self._guard.locked():
            import_passes_total.labels(result="skipped_busy").inc()
            logger.info("Import pass already running, skipping")
            return None

        async with self._guard:
            self.last_started_at = int(time.time())
            try:
                result = await self.run_pass()
            except Exception as exc:
                self.last_error = str(exc)
                import_passes_total.labels(result="error").inc()
                raise
            finally:
                self.last_finished_at = int(time.time())

            self.last_result = result
            self.last_error = None
            import_passes_total.labels(result="completed").inc()
            return result

    async def run_scheduled(self) -> None:
        """Scheduled job entry point: a failing pass is logged, never raised."""
        try:
            await self.run_once()
        except Exception as e:
            logger.error("Scheduled import pass failed", error=str(e), exc_info=True)

    def start(self) -> None:
        """Schedule a pass every ``interval_seconds``, the first one right away."""
        if self.loop_active:
            return
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.run_scheduled,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=IMPORT_JOB_ID,
            name="Import completed downloads",
            next_run_time=datetime.now(UTC),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info("Import job scheduled", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop scheduling passes and wait for the current pass to finish."""
        scheduler = self.scheduler
        if scheduler is None:
            return
        self.scheduler = None
        scheduler.pause()
        # Shutting down cancels in-flight jobs, so let the pass end first
        async with self._guard:
            pass
        scheduler.shutdown(wait=True)
        logger.info("Import job stopped")

    def status(self) -> dict[str, object]:
        return {
            "running": self.running,
            "loop_active": self.loop_active,
            "interval_seconds": self.interval_seconds,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_result": self.last_result.as_dict() if self.last_result else None,
            "last_error": self.last_error,
        }
