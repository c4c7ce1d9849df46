from __future__ import annotations

import argparse
import asyncio
import signal

import structlog

from instance_monitor.config import MonitorConfig, load_config
from instance_monitor.logging_config import configure_logging
from instance_monitor.notifications import Notifier
from instance_monitor.watchdog.monitor import HealthWatchdog
from instance_monitor.watchdog.recovery import PlaywrightRecoveryTrigger

logger = structlog.get_logger(__name__)


def build_watchdog(config: MonitorConfig) -> HealthWatchdog:
    notifier = Notifier(
        config.notifications.slack_webhook_url,
        environment=config.environment,
        health_url=config.watchdog.health_url,
        timeout_seconds=config.notifications.timeout_seconds,
    )
    trigger = PlaywrightRecoveryTrigger(config.recovery)
    if not trigger.is_configured():
        logger.warning("Restart automation is not configured, restarts will fail")
    return HealthWatchdog(config.watchdog, notifier, trigger)


async def run_until_stopped(watchdog: HealthWatchdog) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await watchdog.start()
    try:
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await watchdog.stop()


async def check_once(watchdog: HealthWatchdog):
    try:
        return await watchdog.check_health()
    finally:
        await watchdog.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="WhatsApp API health watchdog")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--once", action="store_true", help="Run one health check and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)

    try:
        watchdog = build_watchdog(config)
    except ValueError as e:
        logger.error("Health watchdog cannot start", error=str(e))
        return 1

    if args.once:
        result = asyncio.run(check_once(watchdog))
        return 0 if result.ok else 1

    asyncio.run(run_until_stopped(watchdog))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
