"""Health watchdog for the service's public endpoint."""

from .monitor import HealthWatchdog, ProbeResult
from .state import HealthStatus, WatchdogPhase, WatchdogState

__all__ = ["HealthStatus", "HealthWatchdog", "ProbeResult", "WatchdogPhase", "WatchdogState"]
