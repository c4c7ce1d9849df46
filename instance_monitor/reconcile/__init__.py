"""Instance reconciliation: decisions, remediation and session operations."""

from .engine import ReconciliationEngine
from .outcome import (
    Action,
    InstanceCheckResult,
    InstanceOutcome,
    ReconciliationOutcome,
    ReconciliationStatistics,
    RemediationStatus,
    Step,
    StepResult,
)

__all__ = [
    "Action",
    "InstanceCheckResult",
    "InstanceOutcome",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "ReconciliationStatistics",
    "RemediationStatus",
    "Step",
    "StepResult",
]
