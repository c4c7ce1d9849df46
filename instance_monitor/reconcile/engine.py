"""Reconciliation of CodeChat instances against their real connection state."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from instance_monitor.codechat.models import InstanceDetail, InstanceSummary
from instance_monitor.errors import CodeChatError, ErrorKind, InstanceNotFoundError, InstanceNotOnlineError
from instance_monitor.reconcile.decision import decide
from instance_monitor.reconcile.outcome import (
    Action,
    InstanceCheckResult,
    InstanceOutcome,
    ReconciliationOutcome,
    ReconciliationStatistics,
    Step,
    StepResult,
)

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ReconciliationEngine:
    """Walks ONLINE instances one at a time and repairs broken sessions.

    Only one pass (or single-instance check) runs at a time per engine;
    callers queue on the run lock, scheduled runs skip instead.
    """

    def __init__(self, codechat, users, *, delay_seconds: float = 1.0, sleep: Sleep | None = None):
        self.codechat = codechat
        self.users = users
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

    @property
    def run_lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def pause(self) -> None:
        """Throttle before the next remote call sequence."""
        if self.delay_seconds > 0:
            logger.debug("Waiting before next instance", delay_seconds=self.delay_seconds)
            await self._sleep(self.delay_seconds)

    async def run_scheduled(self) -> ReconciliationOutcome | None:
        """Entry point for the scheduler; skips when a pass is in flight."""
        if self._lock.locked():
            logger.warning("Reconciliation already running, skipping scheduled pass")
            return None
        return await self.reconcile_all()

    async def reconcile_all(self) -> ReconciliationOutcome:
        """Run one full pass. Never raises."""
        async with self._lock:
            return await self._reconcile_all()

    async def _reconcile_all(self) -> ReconciliationOutcome:
        logger.info("Starting instance check")
        try:
            instances = await self.codechat.list_instances()
        except Exception as e:
            logger.error("Error fetching instances", error=str(e))
            return ReconciliationOutcome.failed(str(e))

        online = [i for i in instances if i.is_online]
        logger.info("Fetched instances", total=len(instances), online=len(online))

        if not online:
            logger.info("No online instances found, skipping connection check")
            return ReconciliationOutcome(success=True, message="No online instances found")

        stats = ReconciliationStatistics(total_instances=len(instances), online_instances=len(online))
        outcomes: list[InstanceOutcome] = []

        for index, summary in enumerate(online):
            try:
                outcome = await self._process_instance(summary)
            except Exception as e:
                logger.error("Failed to process instance", instance=summary.key, error=str(e))
                outcome = InstanceOutcome(
                    instance_id=summary.id, name=summary.key, action=Action.SKIP, reason=f"unexpected error: {e}"
                )
            stats.record(outcome)
            outcomes.append(outcome)

            if index < len(online) - 1:
                await self.pause()

        logger.info("Instance check completed", **stats.to_dict())
        return ReconciliationOutcome(
            success=True,
            message="Instance check completed",
            statistics=stats,
            instances=outcomes,
        )

    async def reconcile_one(self, instance_key: str) -> InstanceCheckResult:
        """Check and repair a single instance.

        Raises:
            InstanceNotFoundError: the gateway does not know the instance
            InstanceNotOnlineError: the instance is not ONLINE
            CodeChatError: the instance listing itself failed
        """
        async with self._lock:
            logger.info("Checking individual instance", instance=instance_key)
            try:
                instances = await self.codechat.list_instances(instance_key)
            except CodeChatError as e:
                if e.kind == ErrorKind.NOT_FOUND:
                    raise InstanceNotFoundError(f"Instance with ID {instance_key} not found") from e
                raise

            if not instances:
                raise InstanceNotFoundError(f"Instance with ID {instance_key} not found")

            summary = instances[0]
            if not summary.is_online:
                raise InstanceNotOnlineError(
                    f"Instance {instance_key} is not online (status: {summary.connection_status})",
                    details={"instance": summary.to_dict()},
                )

            outcome = await self._process_instance(summary)
            return InstanceCheckResult(
                instance_id=summary.id,
                name=summary.name,
                connection_status=summary.connection_status,
                outcome=outcome,
            )

    async def _process_instance(self, summary: InstanceSummary) -> InstanceOutcome:
        name = summary.key
        outcome = InstanceOutcome(instance_id=summary.id, name=name)

        detail: InstanceDetail | None = None
        detail_error: Exception | None = None
        try:
            detail = await self.codechat.get_instance_detail(name, summary.auth_token)
        except CodeChatError as e:
            detail_error = e
            outcome.detail_error = str(e)

        decision = decide(summary, detail, detail_error)
        outcome.action = decision.action
        outcome.reason = decision.reason
        outcome.liveness = detail.connection_state if detail is not None else None

        if decision.action == Action.FORCE_LOGOUT:
            logger.info("Connecting and logging out instance", instance=name, reason=decision.reason)
            await self._force_logout(summary, outcome)
        elif decision.action == Action.RECONNECT:
            logger.info("Instance has closed connection, reconnecting", instance=name)
            await self._reconnect(summary, outcome)
        elif decision.action == Action.NONE:
            logger.info("Instance is properly connected", instance=name, state=outcome.liveness)
        else:
            logger.warning("Skipping instance", instance=name, reason=decision.reason)
        return outcome

    async def _run_step(self, outcome: InstanceOutcome, step: Step, call: Callable[[], Awaitable[Any]]) -> tuple[bool, Any]:
        try:
            value = await call()
        except Exception as e:
            logger.error("Remediation step failed", instance=outcome.name, step=step.value, error=str(e))
            outcome.record(StepResult(step=step, ok=False, error=str(e)))
            return False, None
        outcome.record(StepResult(step=step, ok=True))
        return True, value

    async def _mark_offline(self, outcome: InstanceOutcome) -> None:
        try:
            result = await self.users.mark_offline(outcome.name)
        except Exception as e:
            logger.error("Failed to mark instance offline", instance=outcome.name, error=str(e))
            outcome.record(StepResult(step=Step.MARK_OFFLINE, ok=False, error=str(e)))
            return
        detail = None if result.matched else "no user record for instance"
        outcome.record(StepResult(step=Step.MARK_OFFLINE, ok=True, detail=detail))

    async def _force_logout(self, summary: InstanceSummary, outcome: InstanceOutcome) -> None:
        name, token = summary.key, summary.auth_token
        ok, _ = await self._run_step(outcome, Step.CONNECT, lambda: self.codechat.connect(name, token))
        if not ok:
            return
        ok, _ = await self._run_step(outcome, Step.LOGOUT, lambda: self.codechat.logout(name, token))
        if not ok:
            return
        await self._mark_offline(outcome)

    async def _reconnect(self, summary: InstanceSummary, outcome: InstanceOutcome) -> None:
        name, token = summary.key, summary.auth_token
        ok, result = await self._run_step(outcome, Step.RECONNECT, lambda: self.codechat.connect(name, token))
        if not ok:
            return
        if result is None or not result.requires_pairing:
            return

        outcome.requires_pairing = True
        logger.info("Reconnect returned a QR code, logging out instance", instance=name)
        ok, _ = await self._run_step(outcome, Step.LOGOUT, lambda: self.codechat.logout(name, token))
        if not ok:
            return
        await self._mark_offline(outcome)
