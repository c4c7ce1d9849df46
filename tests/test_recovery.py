from __future__ import annotations

import pytest

from instance_monitor.config import RecoveryConfig
from instance_monitor.watchdog import recovery
from instance_monitor.watchdog.recovery import (
    PlaywrightRecoveryTrigger,
    RecoveryConfigError,
    missing_settings,
    restart_app,
)


def test_missing_settings_names_env_vars() -> None:
    cfg = RecoveryConfig(login_url="https://console.example.test/login", email="  ")
    assert missing_settings(cfg) == ["F22_EMAIL", "F22_PASSWORD", "F22_API_URL"]


@pytest.mark.asyncio
async def test_restart_refuses_to_launch_browser_without_credentials(monkeypatch) -> None:
    def fail_launch():
        raise AssertionError("browser must not be launched")

    monkeypatch.setattr(recovery, "async_playwright", fail_launch)

    with pytest.raises(RecoveryConfigError) as excinfo:
        await restart_app(RecoveryConfig(email="ops@example.test"))
    assert "F22_LOGIN_URL" in str(excinfo.value)


@pytest.mark.asyncio
async def test_trigger_reports_configuration(monkeypatch) -> None:
    monkeypatch.setattr(recovery, "async_playwright", lambda: pytest.fail("browser launched"))
    trigger = PlaywrightRecoveryTrigger(RecoveryConfig())

    assert trigger.is_configured() is False
    with pytest.raises(RecoveryConfigError):
        await trigger()

    full = PlaywrightRecoveryTrigger(
        RecoveryConfig(login_url="https://l.test", email="e", password="p", app_url="https://a.test")
    )
    assert full.is_configured() is True
