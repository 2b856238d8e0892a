import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import settings
from ingestion.runner import run_full_sync, run_incremental_sync
from models.base import SourceType, SyncMode

logger = logging.getLogger(__name__)

# Economic sources advance watermarks; PrestaShop has none and is refreshed in full
DEFAULT_SCHEDULE: Dict[SourceType, SyncMode] = {
    SourceType.REST: SyncMode.INCREMENTAL,
    SourceType.OPENAPI: SyncMode.INCREMENTAL,
    SourceType.PRESTASHOP: SyncMode.FULL,
}

HISTORY_SIZE = 50

SyncEntrypoint = Callable[[SourceType], Awaitable[str]]


class IngestionScheduler:
    def __init__(
        self,
        cron: Optional[str] = None,
        timezone: Optional[str] = None,
        schedule: Optional[Dict[SourceType, SyncMode]] = None,
        entrypoints: Optional[Dict[SyncMode, SyncEntrypoint]] = None
    ):
        self.cron = cron or settings.SYNC_CRON
        self.timezone = timezone or settings.SYNC_TIMEZONE
        self.schedule = schedule or DEFAULT_SCHEDULE
        self.entrypoints = entrypoints or {
            SyncMode.FULL: run_full_sync,
            SyncMode.INCREMENTAL: run_incremental_sync,
        }
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.history: Deque[str] = deque(maxlen=HISTORY_SIZE)

    @staticmethod
    def job_id(source: SourceType) -> str:
        return f"sync_{source.value}"

    async def run_sync_job(self, source: SourceType, mode: SyncMode) -> Optional[str]:
        """Job to run one source's sync; the rendered report is logged and kept."""
        logger.info(f"Scheduler: starting {mode.value} sync for {source.value}")
        try:
            summary = await self.entrypoints[mode](source)
        except Exception as e:
            logger.error(f"Scheduler: {source.value} sync job failed - {e}")
            return None

        logger.info(f"Scheduler: {source.value} sync finished\n{summary}")
        self.history.append(summary)
        return summary

    def start(self):
        """Start the scheduler"""
        for source, mode in self.schedule.items():
            self.scheduler.add_job(
                self.run_sync_job,
                trigger=CronTrigger.from_crontab(self.cron, timezone=self.timezone),
                args=[source, mode],
                id=self.job_id(source),
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
        self.scheduler.start()
        logger.info(
            f"Ingestion scheduler started ({self.cron}, {self.timezone}) for "
            f"{', '.join(s.value for s in self.schedule)}"
        )

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Ingestion scheduler stopped")
