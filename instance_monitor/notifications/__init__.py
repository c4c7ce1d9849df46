"""Alert delivery for the watchdog."""

from .slack import Notifier, WebhookConfig, build_slack_payload, send_slack_message

__all__ = ["Notifier", "WebhookConfig", "build_slack_payload", "send_slack_message"]
