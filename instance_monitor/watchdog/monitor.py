"""External health watchdog with automated restart and escalation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from instance_monitor.config import WatchdogConfig
from instance_monitor.notifications import Notifier
from instance_monitor.notifications.alerts import (
    build_health_failure_message,
    build_manual_intervention_message,
    build_recovery_attempt_message,
    build_recovery_confirmed_message,
    build_recovery_failed_message,
    build_restart_failed_message,
    build_service_recovered_message,
)
from instance_monitor.scheduler.job_scheduler import JobScheduler
from instance_monitor.watchdog.state import HealthStatus, WatchdogState

logger = structlog.get_logger(__name__)

POLL_JOB_ID = "watchdog_poll"
CONFIRM_JOB_ID = "watchdog_confirm_recovery"

RecoveryTrigger = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    status_code: Optional[int] = None
    detail: str = ""


class HealthWatchdog:
    """Polls the service's public health URL and drives recovery.

    A failing poll alerts, and restarts the app when no confirmation is
    pending and the restart cooldown has passed. Each restart schedules one
    confirmation poll. Once the failure streak reaches the escalation
    threshold after a restart, every failing poll asks for a human.
    """

    def __init__(
        self,
        config: WatchdogConfig,
        notifier: Notifier,
        recovery_trigger: RecoveryTrigger,
        *,
        scheduler: Optional[JobScheduler] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not config.health_url:
            raise ValueError("HEALTH_CHECK_URL is required for the health watchdog")
        self.config = config
        self.notifier = notifier
        self.recovery_trigger = recovery_trigger
        self.scheduler = scheduler or JobScheduler()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._cycle_lock = asyncio.Lock()
        self.state = WatchdogState(escalate_after=config.escalate_after_failures)
        self.is_running = False

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.request_timeout_seconds)
        return self._http_client

    async def _probe(self) -> ProbeResult:
        try:
            resp = await self._client().get(self.config.health_url, timeout=self.config.request_timeout_seconds)
        except httpx.HTTPError as e:
            return ProbeResult(ok=False, detail=f"{type(e).__name__}: {e}")
        if resp.status_code == 200:
            return ProbeResult(ok=True, status_code=200)
        return ProbeResult(ok=False, status_code=resp.status_code, detail=f"HTTP {resp.status_code}")

    async def _notify(self, text: str, level: str) -> None:
        await self.notifier.notify(text, level=level, consecutive_failures=self.state.consecutive_failures)

    async def check_health(self) -> ProbeResult:
        """One regular poll."""
        async with self._cycle_lock:
            result = await self._probe()
            if result.ok:
                await self._handle_success()
            else:
                await self._handle_failure(result)
            return result

    async def _handle_success(self) -> None:
        was_unhealthy = self.state.last_status != HealthStatus.HEALTHY
        failures = self.state.record_success()
        logger.info("Health check passed")
        if was_unhealthy and failures > 0:
            logger.info("Service recovered", failures=failures)
            await self.notifier.notify(build_service_recovered_message(failures=failures), level="good")

    async def _handle_failure(self, result: ProbeResult) -> None:
        failures = self.state.record_failure()
        logger.warning("Health check failed", failures=failures, detail=result.detail)
        await self._notify(
            build_health_failure_message(detail=result.detail, health_url=self.config.health_url, failures=failures),
            "danger",
        )

        now = self._clock()
        if self.state.can_restart(now, self.config.restart_cooldown_seconds):
            await self._attempt_restart(now)
        elif self.state.confirmation_pending:
            logger.info("Recovery confirmation pending, not restarting")
        elif self.state.restart_attempted:
            logger.info("Restart already attempted for this outage", failures=failures)
        elif failures == 1:
            logger.info("Restart cooldown active", last_restart_time=self.state.last_restart_time)

        if self.state.should_escalate():
            logger.error("Manual intervention required", failures=failures)
            await self._notify(build_manual_intervention_message(failures=failures), "danger")

    async def _attempt_restart(self, now: float) -> None:
        failures = self.state.consecutive_failures
        logger.info("Attempting automatic restart", failures=failures)
        await self._notify(
            build_recovery_attempt_message(failures=failures, wait_seconds=self.config.recovery_wait_seconds),
            "warning",
        )
        self.state.record_restart(now)
        try:
            await self.recovery_trigger()
        except Exception as e:
            logger.error("Restart automation failed", error=str(e))
            await self._notify(build_restart_failed_message(error=str(e)), "danger")
            return

        logger.info("Restart automation completed", wait_seconds=self.config.recovery_wait_seconds)
        self._schedule_confirmation()

    def _schedule_confirmation(self) -> None:
        self.state.confirmation_pending = True
        self.scheduler.add_delayed_job(
            CONFIRM_JOB_ID,
            self.confirm_recovery,
            self.config.recovery_wait_seconds,
            description="Confirm recovery after restart",
        )

    async def confirm_recovery(self) -> ProbeResult:
        """The one-shot poll after a restart."""
        async with self._cycle_lock:
            self.state.confirmation_pending = False
            logger.info("Checking if service recovered after restart")
            result = await self._probe()

            if not result.ok:
                logger.error("Service still failing after restart", detail=result.detail)
                await self._notify(build_recovery_failed_message(detail=result.detail), "danger")
                return result

            if self.state.last_status == HealthStatus.HEALTHY:
                logger.info("Service already recovered before confirmation poll")
                return result

            self.state.record_success()
            logger.info("Service recovered after restart")
            await self.notifier.notify(build_recovery_confirmed_message(), level="good")
            return result

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Health watchdog already running")
            return
        self.scheduler.add_interval_job(
            POLL_JOB_ID,
            self.check_health,
            self.config.check_interval_seconds,
            description="Poll service health",
            run_immediately=True,
        )
        await self.scheduler.start()
        self.is_running = True
        logger.info(
            "Health watchdog started",
            health_url=self.config.health_url,
            interval_seconds=self.config.check_interval_seconds,
        )

    async def stop(self) -> None:
        if not self.is_running:
            logger.warning("Health watchdog is not running")
            return
        await self.scheduler.stop()
        self.is_running = False
        await self.aclose()
        logger.info("Health watchdog stopped")

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            **self.state.to_dict(),
            "config": {
                **self.config.model_dump(),
                "slack_webhook": "[CONFIGURED]" if self.notifier.is_configured() else "[NOT CONFIGURED]",
            },
        }
