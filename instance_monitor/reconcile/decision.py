from __future__ import annotations

from dataclasses import dataclass

from instance_monitor.codechat.models import InstanceDetail, InstanceSummary
from instance_monitor.errors import CodeChatError, ErrorKind
from instance_monitor.reconcile.outcome import Action


@dataclass(frozen=True)
class Decision:
    action: Action
    reason: str


def decide(summary: InstanceSummary, detail: InstanceDetail | None, detail_error: Exception | None) -> Decision:
    """Pick the remediation for one instance.

    Rows are checked in order; the first match wins:

    1. detail fetch failed and the instance is missing, or the gateway still
       reports it ONLINE -> force logout
    2. no liveness state -> force logout
    3. liveness ``close`` -> reconnect
    4. any other liveness -> nothing to do
    5. detail fetch failed otherwise -> skip
    """
    if detail_error is not None or detail is None:
        missing = isinstance(detail_error, CodeChatError) and detail_error.kind == ErrorKind.INSTANCE_MISSING
        if missing:
            return Decision(Action.FORCE_LOGOUT, "instance missing on gateway")
        if summary.is_online:
            return Decision(Action.FORCE_LOGOUT, f"ONLINE but detail fetch failed: {detail_error}")
        return Decision(Action.SKIP, f"detail fetch failed: {detail_error}")

    if detail.connection_state is None:
        return Decision(Action.FORCE_LOGOUT, "ONLINE with no connection state")
    if detail.is_closed:
        return Decision(Action.RECONNECT, "connection state is close")
    return Decision(Action.NONE, f"connection state is {detail.connection_state}")
