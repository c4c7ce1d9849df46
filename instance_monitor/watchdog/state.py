from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class WatchdogPhase(str, Enum):
    HEALTHY = "healthy"
    FAILING = "failing"
    RECOVERING = "recovering"
    ESCALATED = "escalated"


@dataclass
class WatchdogState:
    """Everything the watchdog remembers between polls.

    Only the transition methods below mutate it; ``HealthWatchdog`` decides
    when to call them.
    """

    escalate_after: int = 3
    last_status: HealthStatus = HealthStatus.UNKNOWN
    consecutive_failures: int = 0
    restart_attempted: bool = False
    last_restart_time: Optional[float] = None
    confirmation_pending: bool = False

    @property
    def phase(self) -> WatchdogPhase:
        if self.consecutive_failures == 0:
            return WatchdogPhase.HEALTHY
        if self.confirmation_pending:
            return WatchdogPhase.RECOVERING
        if self.should_escalate():
            return WatchdogPhase.ESCALATED
        return WatchdogPhase.FAILING

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        self.last_status = HealthStatus.UNHEALTHY
        return self.consecutive_failures

    def record_success(self) -> int:
        """Mark the service healthy; returns the failure streak that just ended."""
        previous = self.consecutive_failures
        self.consecutive_failures = 0
        self.restart_attempted = False
        self.last_status = HealthStatus.HEALTHY
        return previous

    def cooldown_elapsed(self, now: float, cooldown_seconds: float) -> bool:
        if self.last_restart_time is None:
            return True
        return (now - self.last_restart_time) > cooldown_seconds

    def can_restart(self, now: float, cooldown_seconds: float) -> bool:
        """Only the first failure of an outage may restart, once per outage."""
        return (
            self.consecutive_failures == 1
            and not self.restart_attempted
            and not self.confirmation_pending
            and self.cooldown_elapsed(now, cooldown_seconds)
        )

    def record_restart(self, now: float) -> None:
        # Set before the trigger runs so a crashing trigger still closes the gate.
        self.restart_attempted = True
        self.last_restart_time = now

    def should_escalate(self) -> bool:
        return self.consecutive_failures >= self.escalate_after and self.restart_attempted

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "last_status": self.last_status.value,
            "consecutive_failures": self.consecutive_failures,
            "restart_attempted": self.restart_attempted,
            "last_restart_time": self.last_restart_time,
            "confirmation_pending": self.confirmation_pending,
        }
