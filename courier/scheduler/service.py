"""Scheduler service for periodic queue processing."""

from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from courier.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_ID = "courier-queue-cycle"


class SchedulerService:
    """
    Wraps APScheduler to run a job at a fixed interval.

    Uses BackgroundScheduler so cycles run on a worker thread while the
    main thread handles signals and shutdown. At most one instance of the
    job runs at a time and a backlog of missed runs collapses into one.
    """

    def __init__(self, job: Callable[[], object], interval_seconds: float):
        """
        Initialize the scheduler service.

        Args:
            job: Function to call on each scheduled run (e.g., processor.process_cycle)
            interval_seconds: Interval between runs in seconds
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self.job = job
        self.interval_seconds = interval_seconds

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # Prevent overlapping runs
                "coalesce": True,  # If run is delayed, only execute once
                "misfire_grace_time": max(1, int(interval_seconds)),
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the job and start the scheduler.

        The first run executes immediately; later runs follow the interval.
        """
        trigger = IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc)

        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.job,
            trigger=trigger,
            id=JOB_ID,
            name="Courier queue cycle",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop scheduling further runs.

        Args:
            wait: If True, wait for a running job to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        """
        Get the next scheduled run time.

        Returns:
            Next run time as a datetime, or None if not scheduled
        """
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
