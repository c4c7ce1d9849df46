"""Job scheduling for reconciliation passes and watchdog polls."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger(__name__)


def parse_cron(cron_expression: str) -> CronTrigger:
    """Build a trigger from "minute hour day month day_of_week"."""
    cron_parts = cron_expression.split()
    if len(cron_parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression}")
    return CronTrigger(
        minute=cron_parts[0],
        hour=cron_parts[1],
        day=cron_parts[2],
        month=cron_parts[3],
        day_of_week=cron_parts[4],
    )


class JobScheduler:
    """Manages scheduled jobs using APScheduler.

    Every job runs with ``max_instances=1`` and ``coalesce=True``: a job that
    is still running when its next fire time comes is not started twice and
    missed runs collapse into one.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    async def stop(self):
        """Stop the job scheduler and drop pending one-shot jobs."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        self.jobs.clear()
        logger.info("Job scheduler stopped")

    def _add(self, job_id: str, func: Callable, trigger, kind: str, info: Dict[str, Any], args, kwargs, description, **extra):
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            name=description or job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **extra,
        )
        self.jobs[job_id] = {
            "job": job,
            "type": kind,
            "description": description,
            "added_at": datetime.now(timezone.utc),
            **info,
        }
        return job

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ):
        """Add a cron-scheduled job."""
        trigger = parse_cron(cron_expression)
        job = self._add(job_id, func, trigger, "cron", {"expression": cron_expression}, args, kwargs, description)
        logger.info("Added cron job", job_id=job_id, cron=cron_expression, description=description)
        return job

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: float,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        run_immediately: bool = False,
    ):
        """Add an interval-based job, optionally firing once right away."""
        extra: Dict[str, Any] = {}
        if run_immediately:
            extra["next_run_time"] = datetime.now(timezone.utc)
        trigger = IntervalTrigger(seconds=seconds)
        job = self._add(job_id, func, trigger, "interval", {"seconds": seconds}, args, kwargs, description, **extra)
        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)
        return job

    def add_delayed_job(
        self,
        job_id: str,
        func: Callable,
        delay_seconds: float,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ):
        """Add a job that runs once after ``delay_seconds``."""
        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        trigger = DateTrigger(run_date=run_at)
        job = self._add(job_id, func, trigger, "date", {"run_at": run_at}, args, kwargs, description)
        logger.info("Added one-shot job", job_id=job_id, delay_seconds=delay_seconds, description=description)
        return job

    def has_job(self, job_id: str) -> bool:
        if job_id not in self.jobs:
            return False
        if self.scheduler.get_job(job_id) is None:
            # One-shot jobs leave the APScheduler store once they fire.
            del self.jobs[job_id]
            return False
        return True

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        del self.jobs[job_id]
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if not self.has_job(job_id):
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "type": job_info["type"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all scheduled jobs."""
        job_statuses = []
        for job_id in list(self.jobs):
            status = self.get_job_status(job_id)
            if status:
                job_statuses.append(status)
        return job_statuses
