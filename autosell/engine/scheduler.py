"""APScheduler integration for per-position ticks.

Each active position gets one interval job. The job handle is the explicit
cancel signal: removing it stops the tick immediately.
"""

import logging
from typing import Awaitable, Callable

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


def _job_id(asset_id: str) -> str:
    return f"position_{asset_id}"


class TickScheduler:
    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()

    def add_position_job(
        self,
        asset_id: str,
        func: Callable[[], Awaitable[None]],
        interval_ms: int,
    ) -> Job:
        """Add or replace the tick job for an asset."""
        job_id = _job_id(asset_id)

        # Remove existing job if present
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)

        job = self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=interval_ms / 1000),
            id=job_id,
            name=f"Position {asset_id[:8]}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=5,
        )
        logger.info(f"Scheduled {asset_id[:8]} tick every {interval_ms}ms")
        return job

    def remove_position_job(self, asset_id: str) -> bool:
        job_id = _job_id(asset_id)
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            logger.info(f"Removed tick job for {asset_id[:8]}")
            return True
        return False

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
