"""Slack-compatible webhook notifications for watchdog alerts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

LEVEL_COLORS = {
    "good": "good",
    "info": "good",
    "warning": "warning",
    "danger": "danger",
    "critical": "danger",
}


@dataclass(frozen=True)
class WebhookConfig:
    url: str
    environment: str = "dev"
    health_url: str = ""
    timeout_seconds: float = 10.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_slack_payload(
    config: WebhookConfig,
    text: str,
    *,
    level: str = "warning",
    consecutive_failures: int = 0,
    now: datetime | None = None,
) -> dict[str, Any]:
    ts = now or _utc_now()
    return {
        "attachments": [
            {
                "color": LEVEL_COLORS.get(level, "warning"),
                "title": f"WhatsApp API Health Monitor - {config.environment.upper()}",
                "text": text,
                "ts": int(ts.timestamp()),
                "fields": [
                    {"title": "Environment", "value": config.environment, "short": True},
                    {"title": "Health URL", "value": config.health_url or "-", "short": True},
                    {"title": "Consecutive Failures", "value": str(int(consecutive_failures)), "short": True},
                    {"title": "Timestamp", "value": ts.isoformat(), "short": True},
                ],
            }
        ]
    }


async def send_slack_message(client: httpx.AsyncClient, config: WebhookConfig, payload: dict[str, Any]) -> tuple[bool, str]:
    try:
        resp = await client.post(config.url, json=payload, timeout=config.timeout_seconds)
        if resp.status_code >= 400:
            return False, f"HTTP {resp.status_code}: {resp.text[:200]}"
        return True, "ok"
    except httpx.HTTPError as e:
        msg = f"{type(e).__name__}: {e}"
        # The webhook path is the credential.
        return False, msg.replace(config.url, "<redacted>")


class Notifier:
    """Sends watchdog alerts to the configured webhook."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        environment: str = "dev",
        health_url: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the notifier.

        Args:
            webhook_url: Incoming webhook URL, alerts are skipped when empty
            environment: Environment label shown in every alert
            health_url: Monitored URL shown in every alert
            timeout_seconds: Delivery timeout
            http_client: Shared client; one is created per send when omitted
        """
        self.config = WebhookConfig(
            url=(webhook_url or "").strip(),
            environment=environment or "dev",
            health_url=health_url or "",
            timeout_seconds=timeout_seconds,
        )
        self._http_client = http_client
        if not self.is_configured():
            logger.warning("Alert webhook not configured")

    def is_configured(self) -> bool:
        return bool(self.config.url)

    async def notify(self, text: str, *, level: str = "warning", consecutive_failures: int = 0) -> bool:
        """Deliver one alert. Never raises.

        Returns:
            True if the webhook accepted the message
        """
        if not self.is_configured():
            logger.warning("Alert webhook not configured, skipping notification")
            return False

        payload = build_slack_payload(self.config, text, level=level, consecutive_failures=consecutive_failures)
        try:
            if self._http_client is not None:
                ok, detail = await send_slack_message(self._http_client, self.config, payload)
            else:
                async with httpx.AsyncClient() as client:
                    ok, detail = await send_slack_message(client, self.config, payload)
        except Exception as e:
            logger.error("Unexpected error sending notification", error=str(e))
            return False

        if ok:
            logger.info("Notification sent", level=level)
        else:
            logger.error("Failed to send notification", error=detail)
        return ok
