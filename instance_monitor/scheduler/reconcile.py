"""Wall-clock cadence for reconciliation passes."""

from __future__ import annotations

import structlog

from instance_monitor.reconcile.engine import ReconciliationEngine
from instance_monitor.reconcile.outcome import ReconciliationOutcome
from instance_monitor.scheduler.job_scheduler import JobScheduler

logger = structlog.get_logger(__name__)

RECONCILE_JOB_ID = "reconcile_instances"


class ReconcileScheduler:
    """Fires the engine on a cron cadence and on demand."""

    def __init__(self, engine: ReconciliationEngine, cron: str, *, enabled: bool = True, jobs: JobScheduler | None = None):
        self.engine = engine
        self.cron = cron
        self.enabled = enabled
        self.jobs = jobs or JobScheduler()

    async def _scheduled_pass(self) -> None:
        outcome = await self.engine.run_scheduled()
        if outcome is None:
            return
        if not outcome.success:
            logger.error("Scheduled instance check failed", error=outcome.error)

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Reconciliation schedule disabled")
            return
        self.jobs.add_cron_job(
            RECONCILE_JOB_ID,
            self._scheduled_pass,
            self.cron,
            description="Reconcile CodeChat instances",
        )
        await self.jobs.start()
        logger.info("Reconciliation schedule started", cron=self.cron)

    async def stop(self) -> None:
        await self.jobs.stop()

    async def trigger_now(self) -> ReconciliationOutcome:
        """Run a pass right away, waiting for any pass already in flight."""
        logger.info("Manual instance check requested")
        return await self.engine.reconcile_all()

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "cron": self.cron,
            "running": self.engine.is_running,
            "jobs": self.jobs.list_jobs(),
        }
