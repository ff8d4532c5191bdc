from apscheduler.schedulers.asyncio import AsyncIOScheduler
from typing import Optional
import logging

from expiry_alerts.config import Settings
from expiry_alerts.services.aggregation import AggregationRefresher
from expiry_alerts.services.orchestrator import CycleOrchestrator

logger = logging.getLogger(__name__)


class EngineScheduler:
    """
    In-process schedule for the notification cycle and view refreshes.

    - Daily cron job for the cycle
    - One interval job per aggregate view
    - max_instances=1 / coalesce=True: no overlapping runs, missed runs merged
    """

    def __init__(
        self,
        config: Settings,
        orchestrator: CycleOrchestrator,
        refresher: AggregationRefresher,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.refresher = refresher
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._configured = False

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def configure(self) -> None:
        if self._configured:
            return

        self._scheduler.add_job(
            self.orchestrator.run_scheduled,
            trigger="cron",
            hour=self.config.CYCLE_CRON_HOUR,
            minute=self.config.CYCLE_CRON_MINUTE,
            id="notification_cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        for view_name, minutes in self.config.refresh_intervals.items():
            self._scheduler.add_job(
                self.refresher.run_scheduled,
                trigger="interval",
                minutes=minutes,
                args=[view_name],
                id=f"refresh_{view_name}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self._configured = True

    def job_ids(self) -> list:
        return [job.id for job in self._scheduler.get_jobs()]

    def start(self) -> None:
        if self.running:
            logger.info("Scheduler already running, skipping start")
            return
        self.configure()
        self._scheduler.start()
        logger.info(
            f"Scheduler started: cycle daily at {self.config.CYCLE_CRON_HOUR:02d}:"
            f"{self.config.CYCLE_CRON_MINUTE:02d} UTC, {len(self.config.refresh_intervals)} view refresh jobs"
        )

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
