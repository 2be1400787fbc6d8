"""APScheduler-based aggregation scheduler.

Three independent cron jobs drive the aggregator: a Kroger refresh, a Publix
refresh and a daily expiry cleanup. All triggers are evaluated in one fixed
timezone.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from grocery_deals.config import settings

logger = structlog.get_logger(__name__)


class AggregationScheduler:
    """Owns the periodic refresh and cleanup jobs of a DealAggregator.

    This scheduler:
    - Registers the three jobs on start() and removes them all on stop()
    - Never registers a job twice, so start/stop/start leaves three triggers
    - Logs and swallows job exceptions so one failure never stops the others
    """

    KROGER_JOB_ID = "aggregate_kroger"
    PUBLIX_JOB_ID = "aggregate_publix"
    CLEANUP_JOB_ID = "cleanup_expired_deals"

    def __init__(
        self,
        aggregator: Any,
        scheduler: Optional[AsyncIOScheduler] = None,
        timezone: Optional[str] = None,
        kroger_every_hours: Optional[int] = None,
        publix_every_hours: Optional[int] = None,
        cleanup_hour: Optional[int] = None,
    ):
        """Initialize the scheduler.

        Args:
            aggregator: Object exposing aggregate_kroger_deals,
                aggregate_publix_deals and cleanup_expired_deals coroutines
            scheduler: Injected APScheduler instance (tests use a paused one)
            timezone: IANA timezone for every trigger
            kroger_every_hours: Kroger refresh period in hours
            publix_every_hours: Publix refresh period in hours
            cleanup_hour: Hour of day for the expiry cleanup
        """
        self.aggregator = aggregator
        self.timezone = timezone or settings.SCHEDULER_TIMEZONE
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)
        self.kroger_every_hours = kroger_every_hours or settings.KROGER_REFRESH_HOURS
        self.publix_every_hours = publix_every_hours or settings.PUBLIX_REFRESH_HOURS
        self.cleanup_hour = settings.CLEANUP_HOUR if cleanup_hour is None else cleanup_hour
        self.logger = logger.bind(service="aggregation_scheduler")
        self._job_ids: Dict[str, str] = {}

    def start(self) -> None:
        """Register the jobs and start the scheduler.

        Calling start() while already started is a no-op.
        """
        if self._job_ids:
            self.logger.warning("scheduler_already_running")
            return

        jobs = (
            (
                self.KROGER_JOB_ID,
                self.aggregator.aggregate_kroger_deals,
                CronTrigger(hour=f"*/{self.kroger_every_hours}", minute=0, timezone=self.timezone),
            ),
            (
                self.PUBLIX_JOB_ID,
                self.aggregator.aggregate_publix_deals,
                CronTrigger(hour=f"*/{self.publix_every_hours}", minute=0, timezone=self.timezone),
            ),
            (
                self.CLEANUP_JOB_ID,
                self.aggregator.cleanup_expired_deals,
                CronTrigger(hour=self.cleanup_hour, minute=0, timezone=self.timezone),
            ),
        )

        for job_id, func, trigger in jobs:
            job = self.scheduler.add_job(
                func=self._run_job_wrapper,
                trigger=trigger,
                args=[job_id, func],
                id=job_id,
                name=job_id,
                replace_existing=True,
                max_instances=1,  # A slow run must not overlap the next firing
            )
            self._job_ids[job_id] = job.id

        if not self.scheduler.running:
            self.scheduler.start()

        self.logger.info(
            "scheduler_started",
            timezone=self.timezone,
            jobs=list(self._job_ids),
        )

    def stop(self) -> None:
        """Remove every job and shut the scheduler down.

        Stopping a scheduler that is not running does nothing.
        """
        if not self._job_ids and not self.scheduler.running:
            return

        for job_id in list(self._job_ids.values()):
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)
        self._job_ids.clear()

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        self.logger.info("scheduler_stopped")

    async def _run_job_wrapper(self, job_id: str, func: Callable[[], Awaitable[Any]]) -> None:
        """Run one scheduled job, logging instead of raising.

        Args:
            job_id: Job identifier used in log events
            func: Coroutine function to await
        """
        self.logger.info("scheduled_job_started", job_id=job_id)
        try:
            result = await func()
        except Exception as e:
            self.logger.error(
                "scheduled_job_failed",
                job_id=job_id,
                error=str(e),
                exc_info=True,
            )
            return
        self.logger.info("scheduled_job_completed", job_id=job_id, success=getattr(result, "success", None))

    def get_jobs_status(self) -> dict:
        """Get status of all scheduled jobs.

        Returns:
            Dict with job information keyed by job id
        """
        jobs = {}
        for job_id in self._job_ids.values():
            job = self.scheduler.get_job(job_id)
            if job:
                jobs[job_id] = {
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return jobs

    def is_running(self) -> bool:
        """True while jobs are registered and the scheduler is running."""
        return bool(self._job_ids) and self.scheduler.running
