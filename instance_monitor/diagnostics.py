"""One-shot deployment diagnostics.

Run ``python -m instance_monitor.diagnostics``; the exit code is 0 when every
check is healthy, 1 on warnings, 2 when something is unhealthy and 3 when the
diagnostics themselves crash.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import platform
import resource
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from instance_monitor.codechat import CodeChatClient
from instance_monitor.config import MonitorConfig, load_config
from instance_monitor.logging_config import configure_logging
from instance_monitor.watchdog.recovery import missing_settings

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
WARNING = "warning"
UNHEALTHY = "unhealthy"

EXIT_CODES = {HEALTHY: 0, WARNING: 1, UNHEALTHY: 2}
EXIT_CRASH = 3

HIGH_MEMORY_MB = 500

_STARTED_AT = time.time()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CheckResult:
    name: str
    status: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class DiagnosticsReport:
    checks: list[CheckResult] = field(default_factory=list)
    timestamp: str = field(default_factory=_now_iso)

    @property
    def overall(self) -> str:
        statuses = {c.status for c in self.checks}
        if UNHEALTHY in statuses:
            return UNHEALTHY
        if WARNING in statuses:
            return WARNING
        return HEALTHY

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.overall]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "overall": self.overall,
            "checks": [asdict(c) for c in self.checks],
        }


def check_environment(config: MonitorConfig) -> CheckResult:
    required = {"CODECHAT_URL": config.codechat_url, "API_KEY": config.api_key}
    missing = [name for name, value in required.items() if not value]
    if missing:
        return CheckResult(
            "Environment Configuration",
            UNHEALTHY,
            "Some required environment variables are missing",
            {"missingVars": missing, "environment": config.environment},
        )
    return CheckResult(
        "Environment Configuration",
        HEALTHY,
        "All required environment variables are configured",
        {"configuredVars": list(required), "environment": config.environment},
    )


def _rss_mb() -> int:
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return int(round(peak / divisor))


def check_resources(*, rss_mb: int | None = None, uptime_seconds: float | None = None) -> CheckResult:
    rss = _rss_mb() if rss_mb is None else rss_mb
    uptime = (time.time() - _STARTED_AT) if uptime_seconds is None else uptime_seconds
    high = rss > HIGH_MEMORY_MB
    up = int(uptime)
    return CheckResult(
        "System Resources",
        WARNING if high else HEALTHY,
        "High memory usage detected" if high else "System resources are normal",
        {
            "rssMB": rss,
            "uptimeSeconds": up,
            "uptimeFormatted": f"{up // 3600}h {(up % 3600) // 60}m {up % 60}s",
            "pythonVersion": platform.python_version(),
            "platform": sys.platform,
        },
    )


async def check_service(client: httpx.AsyncClient, config: MonitorConfig) -> CheckResult:
    url = f"http://localhost:{config.port}/health"
    try:
        resp = await client.get(url, timeout=5.0)
    except httpx.HTTPError as e:
        return CheckResult("Instance Monitor API", UNHEALTHY, "API is not accessible", {"error": str(e), "url": url})
    if resp.status_code != 200:
        return CheckResult(
            "Instance Monitor API", UNHEALTHY, f"API returned status {resp.status_code}", {"url": url}
        )
    try:
        status = resp.json().get("status")
    except ValueError:
        status = None
    return CheckResult("Instance Monitor API", HEALTHY, "API is responding correctly", {"url": url, "status": status})


async def check_codechat(client: httpx.AsyncClient, config: MonitorConfig) -> CheckResult:
    if not config.codechat_url or not config.api_key:
        missing = "CODECHAT_URL" if not config.codechat_url else "API_KEY"
        return CheckResult("CodeChat API", WARNING, "CodeChat credentials not configured", {"missing": missing})
    codechat = CodeChatClient(config.codechat_url, config.api_key, http_client=client, timeout=10.0)
    try:
        instances = await codechat.list_instances()
    except Exception as e:
        return CheckResult(
            "CodeChat API", UNHEALTHY, "CodeChat API is not accessible", {"error": str(e), "url": config.codechat_url}
        )
    return CheckResult(
        "CodeChat API",
        HEALTHY,
        "CodeChat API is accessible",
        {"instanceCount": len(instances), "url": config.codechat_url},
    )


def check_recovery(config: MonitorConfig) -> CheckResult:
    missing = missing_settings(config.recovery)
    if missing:
        return CheckResult(
            "Recovery Automation Configuration",
            WARNING,
            "Some restart automation settings are missing",
            {"missingVars": missing},
        )
    return CheckResult("Recovery Automation Configuration", HEALTHY, "Restart automation is fully configured")


async def run_diagnostics(config: MonitorConfig, *, http_client: httpx.AsyncClient | None = None) -> DiagnosticsReport:
    report = DiagnosticsReport()
    report.checks.append(check_environment(config))
    report.checks.append(check_resources())

    if http_client is not None:
        report.checks.append(await check_service(http_client, config))
        report.checks.append(await check_codechat(http_client, config))
    else:
        async with httpx.AsyncClient() as client:
            report.checks.append(await check_service(client, config))
            report.checks.append(await check_codechat(client, config))

    report.checks.append(check_recovery(config))
    for check in report.checks:
        logger.info("Diagnostic check", name=check.name, status=check.status, message=check.message)
    logger.info("Diagnostics finished", overall=report.overall)
    return report


def main() -> int:
    parser = argparse.ArgumentParser(description="Instance monitor diagnostics")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
        configure_logging(config.log_level)
        report = asyncio.run(run_diagnostics(config))
    except Exception as e:
        logger.error("Diagnostics crashed", error=str(e))
        return EXIT_CRASH

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
