from __future__ import annotations


def build_health_failure_message(*, detail: str, health_url: str, failures: int) -> str:
    return "\n".join(
        [
            "🚨 *API Health Check Failed*",
            "",
            f"Error: {str(detail)[:500]}",
            f"URL: {health_url}",
            f"Failure #{int(failures)}",
        ]
    )


def build_service_recovered_message(*, failures: int) -> str:
    return (
        "✅ *Service Recovered!*\n\n"
        f"The WhatsApp API is now responding normally after {int(failures)} consecutive failures."
    )


def build_recovery_attempt_message(*, failures: int, wait_seconds: int) -> str:
    return "\n".join(
        [
            "🔄 *Attempting Automatic Recovery*",
            "",
            f"Triggering app restart after {int(failures)} consecutive failures.",
            "",
            f"Will wait {int(wait_seconds)}s for service recovery...",
        ]
    )


def build_restart_failed_message(*, error: str) -> str:
    return "\n".join(
        [
            "❌ *Automatic Restart Failed*",
            "",
            f"Error: {str(error)[:500]}",
            "",
            "🚨 *Manual intervention required!*",
        ]
    )


def build_recovery_confirmed_message() -> str:
    return "✅ *Recovery Successful!*\n\nService is now responding normally after automatic restart."


def build_recovery_failed_message(*, detail: str | None = None) -> str:
    lines = ["❌ *Recovery Failed*", "", "Service is still not responding normally after restart."]
    if detail:
        lines += ["", f"Error: {str(detail)[:500]}"]
    lines += ["", "🚨 *Manual intervention required!*"]
    return "\n".join(lines)


def build_manual_intervention_message(*, failures: int) -> str:
    return "\n".join(
        [
            "🚨 *MANUAL INTERVENTION REQUIRED*",
            "",
            f"Service has been down for {int(failures)} consecutive checks.",
            "Automatic restart was attempted but service is still failing.",
            "",
            "*Please investigate immediately!*",
        ]
    )
