"""Restart the hosted app through its web console with Playwright."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from instance_monitor.config import RecoveryConfig

logger = structlog.get_logger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
]


class RecoveryConfigError(RuntimeError):
    """Console credentials or URLs are missing."""


def missing_settings(config: RecoveryConfig) -> list[str]:
    required = {
        "F22_LOGIN_URL": config.login_url,
        "F22_EMAIL": config.email,
        "F22_PASSWORD": config.password,
        "F22_API_URL": config.app_url,
    }
    return [name for name, value in required.items() if not (value or "").strip()]


async def _log_in(page: Page, config: RecoveryConfig) -> None:
    timeout_ms = int(config.timeout_seconds * 1000)
    await page.goto(config.login_url, wait_until="networkidle")
    await page.wait_for_selector(config.email_selector, timeout=timeout_ms)
    await page.fill(config.email_selector, config.email)
    await page.fill(config.password_selector, config.password)
    await page.click(config.submit_selector)

    try:
        await page.wait_for_function(
            "([sel, text]) => { const el = document.querySelector(sel); return !!el && el.textContent.includes(text); }",
            arg=[config.dashboard_selector, config.dashboard_text],
            timeout=timeout_ms,
        )
        logger.info("Console login succeeded")
    except PlaywrightTimeoutError:
        logger.warning("Dashboard marker not found, waiting for network idle instead")
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)


async def _click_restart(page: Page, config: RecoveryConfig) -> None:
    timeout_ms = int(config.timeout_seconds * 1000)
    await page.goto(config.app_url, wait_until="networkidle")
    button = await page.wait_for_selector(config.restart_selector, timeout=timeout_ms)
    await button.scroll_into_view_if_needed()
    await asyncio.sleep(2)

    try:
        await page.click(config.restart_selector, timeout=timeout_ms)
    except PlaywrightError as e:
        logger.warning("Regular click failed, falling back to DOM click", error=str(e))
        await page.evaluate(
            "(sel) => { const b = document.querySelector(sel); if (b) b.click(); }",
            config.restart_selector,
        )


async def restart_app(config: RecoveryConfig) -> None:
    """Log in to the hosting console and press the app's restart button.

    Raises:
        RecoveryConfigError: credentials or URLs are not configured
        playwright.async_api.Error: any browser step failed
    """
    missing = missing_settings(config)
    if missing:
        raise RecoveryConfigError(f"Missing environment variables: {', '.join(missing)}")

    launch_kwargs: dict[str, Any] = {"headless": config.browser_headless, "args": LAUNCH_ARGS}
    if config.executable_path:
        launch_kwargs["executable_path"] = config.executable_path

    logger.info("Starting app restart automation", app_url=config.app_url)
    async with async_playwright() as p:
        browser = await p.chromium.launch(**launch_kwargs)
        try:
            page = await browser.new_page()
            await _log_in(page, config)
            await _click_restart(page, config)
            logger.info("App restart initiated")
            await asyncio.sleep(config.settle_seconds)
        finally:
            await browser.close()
            logger.info("Browser closed")


class PlaywrightRecoveryTrigger:
    """Callable handed to the watchdog."""

    def __init__(self, config: RecoveryConfig):
        self.config = config

    def is_configured(self) -> bool:
        return not missing_settings(self.config)

    async def __call__(self) -> None:
        await restart_app(self.config)
