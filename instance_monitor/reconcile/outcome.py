"""Result types for reconciliation passes and single-instance checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Action(str, Enum):
    NONE = "none"
    RECONNECT = "reconnect"
    FORCE_LOGOUT = "force_logout"
    SKIP = "skip"


class Step(str, Enum):
    CONNECT = "connect"
    RECONNECT = "reconnect"
    LOGOUT = "logout"
    MARK_OFFLINE = "mark_offline"


class RemediationStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class StepResult:
    step: Step
    ok: bool
    error: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"step": self.step.value, "ok": self.ok}
        if self.error:
            out["error"] = self.error
        if self.detail:
            out["detail"] = self.detail
        return out


@dataclass
class InstanceOutcome:
    """What happened to one instance during a pass.

    Steps are appended in execution order; a step that was never reached
    is simply absent.
    """

    instance_id: str
    name: str
    action: Action = Action.SKIP
    reason: str = ""
    liveness: str | None = None
    requires_pairing: bool = False
    detail_error: str | None = None
    steps: list[StepResult] = field(default_factory=list)

    def record(self, result: StepResult) -> None:
        self.steps.append(result)

    def step_ok(self, step: Step) -> bool:
        return any(s.step == step and s.ok for s in self.steps)

    @property
    def succeeded_steps(self) -> list[Step]:
        return [s.step for s in self.steps if s.ok]

    @property
    def failed_step(self) -> StepResult | None:
        for s in self.steps:
            if not s.ok:
                return s
        return None

    @property
    def status(self) -> RemediationStatus:
        if self.action == Action.SKIP:
            return RemediationStatus.SKIPPED
        if self.failed_step is not None:
            return RemediationStatus.PARTIAL_FAILURE
        return RemediationStatus.SUCCEEDED

    @property
    def reconnected(self) -> bool:
        return self.action == Action.RECONNECT and self.step_ok(Step.RECONNECT) and not self.requires_pairing

    @property
    def logged_out(self) -> bool:
        return self.step_ok(Step.LOGOUT)

    @property
    def message(self) -> str:
        if self.action == Action.NONE:
            return f"Instance is properly connected (state: {self.liveness or 'unknown'})"
        if self.action == Action.RECONNECT:
            if not self.step_ok(Step.RECONNECT):
                return "Instance was disconnected but reconnection failed"
            if self.requires_pairing:
                if self.logged_out:
                    return "Instance was disconnected and logged out due to QR code requirement"
                return "Instance reconnection returned QR code, but logout failed"
            return "Instance was disconnected and has been reconnected"
        if self.action == Action.FORCE_LOGOUT:
            if self.logged_out:
                return "Instance had no live connection and was logged out"
            return "Instance had no live connection but logout failed"
        return f"Instance check skipped: {self.reason or 'unknown reason'}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.instance_id,
            "name": self.name,
            "action": self.action.value,
            "reason": self.reason,
            "whatsappState": self.liveness,
            "remediation": self.status.value,
            "succeededSteps": [s.value for s in self.succeeded_steps],
            "steps": [s.to_dict() for s in self.steps],
            "message": self.message,
        }


@dataclass
class ReconciliationStatistics:
    total_instances: int = 0
    online_instances: int = 0
    open_connections: int = 0
    closed_connections: int = 0
    reconnected: int = 0
    logged_out: int = 0

    def record(self, outcome: InstanceOutcome) -> None:
        if outcome.action == Action.NONE:
            self.open_connections += 1
        elif outcome.action == Action.RECONNECT:
            self.closed_connections += 1
            if outcome.reconnected:
                self.reconnected += 1
            elif outcome.logged_out:
                self.logged_out += 1
        elif outcome.action == Action.FORCE_LOGOUT:
            if outcome.logged_out:
                self.logged_out += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "totalInstances": self.total_instances,
            "onlineInstances": self.online_instances,
            "openConnections": self.open_connections,
            "closedConnections": self.closed_connections,
            "reconnected": self.reconnected,
            "loggedOut": self.logged_out,
        }


@dataclass
class ReconciliationOutcome:
    success: bool
    message: str
    statistics: ReconciliationStatistics = field(default_factory=ReconciliationStatistics)
    error: str | None = None
    instances: list[InstanceOutcome] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str) -> "ReconciliationOutcome":
        return cls(success=False, message="Error checking instances", error=error)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "statistics": self.statistics.to_dict(),
            "instances": [o.to_dict() for o in self.instances],
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class InstanceCheckResult:
    instance_id: str
    name: str
    connection_status: str
    outcome: InstanceOutcome

    @property
    def needs_reconnection(self) -> bool:
        return self.outcome.action in (Action.RECONNECT, Action.FORCE_LOGOUT)

    def to_dict(self) -> dict[str, Any]:
        failed = self.outcome.failed_step
        out: dict[str, Any] = {
            "success": True,
            "message": self.outcome.message,
            "instance": {
                "id": self.instance_id,
                "name": self.name,
                "connectionStatus": self.connection_status,
                "whatsappState": self.outcome.liveness or "unknown",
                "needsReconnection": self.needs_reconnection,
                "reconnected": self.outcome.reconnected,
                "loggedOut": self.outcome.logged_out,
                "remediation": self.outcome.status.value,
                "steps": [s.to_dict() for s in self.outcome.steps],
            },
        }
        if failed is not None and failed.error:
            out["error"] = failed.error
        return out
