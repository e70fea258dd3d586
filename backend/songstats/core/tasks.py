import asyncio
import logging
from typing import Dict, Optional

from ..services.stats_sync import StatsSynchronizer, SyncReport

logger = logging.getLogger(__name__)

class SyncAlreadyRunning(Exception):
    """A sync pass is still in progress."""

class StatsSyncScheduler:
    """Runs a stats sync pass every `interval` seconds.

    Owns one ticker task and at most one pass task. A tick that fires while
    the previous pass is still walking its songs is skipped rather than
    starting a second, concurrent pass.
    """

    def __init__(self, synchronizer: StatsSynchronizer, interval: float):
        self.synchronizer = synchronizer
        self.interval = interval
        self.ticker_task: Optional[asyncio.Task] = None
        self.pass_task: Optional[asyncio.Task] = None
        self.is_running = False
        self.skipped_ticks = 0
        self.last_report: Optional[SyncReport] = None
        self.last_error: Optional[str] = None

    @property
    def is_syncing(self) -> bool:
        return self.pass_task is not None and not self.pass_task.done()

    def trigger(self) -> asyncio.Task:
        """Start a pass now; raises SyncAlreadyRunning if one is in progress"""
        if self.is_syncing:
            raise SyncAlreadyRunning("A stats sync pass is already running")
        self.pass_task = asyncio.create_task(self._run_pass(), name="stats_sync_pass")
        return self.pass_task

    async def _run_pass(self) -> Optional[SyncReport]:
        try:
            report = await self.synchronizer.run_pass()
        except asyncio.CancelledError:
            logger.info("Stats sync pass cancelled")
            raise
        except Exception as e:
            self.last_error = str(e)
            logger.exception("Stats sync pass failed")
            return None
        self.last_report = report
        self.last_error = None
        return report

    async def ticker(self):
        """Periodic sync worker"""
        while self.is_running:
            await asyncio.sleep(self.interval)
            try:
                self.trigger()
            except SyncAlreadyRunning:
                self.skipped_ticks += 1
                logger.info("Previous stats sync pass still running; skipping tick",
                            extra={"skipped_ticks": self.skipped_ticks})
            except Exception as e:
                logger.error(f"Error in stats sync ticker: {str(e)}")

    async def start(self):
        """Start background tasks"""
        if self.is_running:
            return
        self.is_running = True
        self.ticker_task = asyncio.create_task(self.ticker(), name="stats_sync_ticker")
        logger.info("Stats sync scheduler started", extra={"interval": self.interval})

    async def stop(self):
        """Stop background tasks, interrupting any pass mid-cooldown"""
        self.is_running = False

        for task in (self.ticker_task, self.pass_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.ticker_task = None
        logger.info("Stats sync scheduler stopped")

    def status(self) -> Dict:
        return {
            "scheduler_running": self.is_running,
            "sync_in_progress": self.is_syncing,
            "interval_seconds": self.interval,
            "skipped_ticks": self.skipped_ticks,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "last_error": self.last_error,
        }
