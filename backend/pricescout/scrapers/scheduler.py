"""APScheduler jobs that run alongside the API.

- Price tracking: samples every tracked product at a fixed interval.
- Cache purge: drops SQL cache rows past their stale-retention window.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricescout.core.exceptions import CacheUnavailable
from pricescout.services.cache_service import SearchCache, SqlCacheBackend
from pricescout.services.price_tracker import PriceTracker

logger = structlog.get_logger(__name__)


class PriceTrackingScheduler:
    """Owns the background AsyncIOScheduler and its jobs."""

    def __init__(self, tracker: PriceTracker, cache: Optional[SearchCache] = None):
        self.tracker = tracker
        self.cache = cache
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="price_tracking_scheduler")

    def start(self, interval_minutes: int = 360) -> None:
        """Register the jobs and start the scheduler."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self.add_tracking_job(interval_minutes)
        if self.cache is not None and isinstance(self.cache.backend, SqlCacheBackend):
            self.scheduler.add_job(
                func=self._purge_cache_wrapper,
                trigger=IntervalTrigger(hours=6, timezone="UTC"),
                id="purge_search_cache",
                name="Purge expired search cache rows",
                replace_existing=True,
                max_instances=1,
            )
        self.scheduler.start()
        self.logger.info("scheduler_started", jobs=[j.id for j in self.scheduler.get_jobs()])

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")

    def add_tracking_job(self, interval_minutes: int) -> Job:
        # First run after a short delay so startup is not slowed by a crawl
        trigger = IntervalTrigger(
            minutes=interval_minutes,
            start_date=datetime.now(timezone.utc) + timedelta(minutes=1),
            timezone="UTC",
        )
        job = self.scheduler.add_job(
            func=self._run_tracking_wrapper,
            trigger=trigger,
            id="track_prices",
            name="Record prices of tracked products",
            replace_existing=True,
            max_instances=1,
        )
        self.logger.info("tracking_job_added", interval_minutes=interval_minutes)
        return job

    async def _run_tracking_wrapper(self) -> None:
        """Called by APScheduler; keeps one failed run from killing the job."""
        try:
            await self.tracker.record_once()
        except Exception as e:
            self.logger.error("price_tracking_failed", error=str(e), exc_info=True)

    async def _purge_cache_wrapper(self) -> None:
        cutoff = datetime.now(timezone.utc) - self.cache.stale_retention
        try:
            await self.cache.backend.purge_expired(cutoff)
        except CacheUnavailable as e:
            self.logger.warning("cache_purge_skipped", error=e.message)
