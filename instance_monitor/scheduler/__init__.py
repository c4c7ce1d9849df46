"""Scheduling for reconciliation passes and watchdog polls."""

from .job_scheduler import JobScheduler, parse_cron
from .reconcile import RECONCILE_JOB_ID, ReconcileScheduler

__all__ = ["JobScheduler", "RECONCILE_JOB_ID", "ReconcileScheduler", "parse_cron"]
