"""Configuration management for the instance monitor."""

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field


class WatchdogConfig(BaseModel):
    """External health watchdog configuration."""
    health_url: str = Field(default="", description="Public health endpoint of the service")
    check_interval_seconds: int = Field(default=120, description="Seconds between regular polls")
    restart_cooldown_seconds: int = Field(default=300, description="Minimum seconds between restart attempts")
    recovery_wait_seconds: int = Field(default=60, description="Wait before the post-restart confirmation poll")
    escalate_after_failures: int = Field(default=3, description="Consecutive failures before manual escalation")
    request_timeout_seconds: float = Field(default=10.0, description="Health probe timeout")


class NotificationConfig(BaseModel):
    """Alert sink configuration."""
    slack_webhook_url: str = Field(default="", description="Incoming webhook URL for alerts")
    timeout_seconds: float = Field(default=10.0, description="Webhook delivery timeout")


class RecoveryConfig(BaseModel):
    """Browser automation used to restart the hosted app."""
    login_url: str = Field(default="", description="Hosting console login page")
    email: str = Field(default="", description="Hosting console account email")
    password: str = Field(default="", description="Hosting console account password")
    app_url: str = Field(default="", description="App management page holding the restart button")
    browser_headless: bool = Field(default=True, description="Run Chromium headless")
    executable_path: Optional[str] = Field(default=None, description="Chromium executable override")
    email_selector: str = Field(default='input[name="email"]')
    password_selector: str = Field(default='input[name="password"]')
    submit_selector: str = Field(default='button[type="submit"]')
    dashboard_selector: str = Field(default="span.font-medium.transition-opacity.duration-150")
    dashboard_text: str = Field(default="Dashboard")
    restart_selector: str = Field(default='button[aria-label="restart"]')
    timeout_seconds: float = Field(default=15.0, description="Per-step wait timeout")
    settle_seconds: float = Field(default=5.0, description="Pause after clicking restart")


class MonitorConfig(BaseModel):
    """Main configuration for the instance monitor."""

    # Environment settings
    environment: str = Field(default="dev", description="Environment label used in alerts")
    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="0.0.0.0", description="API listen host")
    port: int = Field(default=3000, description="API listen port")

    # Remote CodeChat API
    codechat_url: str = Field(default="", description="CodeChat API base URL")
    api_key: str = Field(default="", description="CodeChat API key")
    request_timeout_seconds: float = Field(default=30.0, description="CodeChat request timeout")
    delay_ms: int = Field(default=1000, description="Pause between per-instance remote calls")

    # Scheduling settings
    cron_start: bool = Field(default=False, description="Run reconciliation on a schedule")
    reconcile_cron: str = Field(default="*/45 * * * *", description="Cron expression for reconciliation")

    # Persisted user directory
    users_db_path: str = Field(default="data/users.db", description="sqlite database holding user records")

    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)

    @property
    def delay_seconds(self) -> float:
        return max(0, self.delay_ms) / 1000.0


_TRUE = ("1", "true", "yes", "y", "on")
_FALSE = ("0", "false", "no", "n", "off")

# env var -> (section or None, field, type)
ENV_OVERRIDES = {
    "ENV": (None, "environment", str),
    "LOG_LEVEL": (None, "log_level", str),
    "HOST": (None, "host", str),
    "PORT": (None, "port", int),
    "CODECHAT_URL": (None, "codechat_url", str),
    "API_KEY": (None, "api_key", str),
    "DELAY_MS": (None, "delay_ms", int),
    "CRON_START": (None, "cron_start", bool),
    "RECONCILE_CRON": (None, "reconcile_cron", str),
    "USERS_DB_PATH": (None, "users_db_path", str),
    "HEALTH_CHECK_URL": ("watchdog", "health_url", str),
    "HEALTH_CHECK_INTERVAL_SECONDS": ("watchdog", "check_interval_seconds", int),
    "RESTART_COOLDOWN_SECONDS": ("watchdog", "restart_cooldown_seconds", int),
    "RECOVERY_WAIT_SECONDS": ("watchdog", "recovery_wait_seconds", int),
    "SLACK_WEBHOOK_URL": ("notifications", "slack_webhook_url", str),
    "F22_LOGIN_URL": ("recovery", "login_url", str),
    "F22_EMAIL": ("recovery", "email", str),
    "F22_PASSWORD": ("recovery", "password", str),
    "F22_API_URL": ("recovery", "app_url", str),
    "BROWSER_HEADLESS": ("recovery", "browser_headless", bool),
    "EXECUTABLE_PATH": ("recovery", "executable_path", str),
}


def _coerce(raw: str, kind: type, default: Any) -> Any:
    value = raw.strip()
    if kind is bool:
        if value.lower() in _TRUE:
            return True
        if value.lower() in _FALSE:
            return False
        return default
    if kind is int:
        try:
            return int(value)
        except ValueError:
            return default
    return value


def load_config(config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> MonitorConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("INSTANCE_MONITOR_CONFIG", "config/instance-monitor.yaml")
    env = os.environ if environ is None else environ

    config_data: Dict[str, Any] = {}

    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    defaults = MonitorConfig()
    for env_name, (section, key, kind) in ENV_OVERRIDES.items():
        raw = env.get(env_name)
        if raw is None or not raw.strip():
            continue
        if section is None:
            target = config_data
            default = getattr(defaults, key)
        else:
            target = config_data.setdefault(section, {})
            default = getattr(getattr(defaults, section), key)
        target[key] = _coerce(raw, kind, default)

    return MonitorConfig(**config_data)


def get_config() -> MonitorConfig:
    """Get the process configuration."""
    return load_config()
