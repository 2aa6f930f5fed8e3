"""Utilities for attaching Playwright to a remote browser over CDP.

The session manager hands these helpers a provider connect URL; they return the
Playwright controller plus every object needed for shutdown so callers can
release resources on all exit paths.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

STEALTH_SCRIPT = """
delete Object.getPrototypeOf(navigator).webdriver;
window.chrome = window.chrome || { runtime: {} };
"""


def connect_remote(
    connect_url: str,
    *,
    start_url: Optional[str] = "https://www.google.com",
    reuse_existing: bool = False,
) -> Tuple[Playwright, Browser, BrowserContext, Page]:
    """Connect to a remote Chromium over CDP and open a desktop-like page.

    Parameters
    ----------
    connect_url:
        WebSocket endpoint issued by the browser provider for the session.
    start_url:
        Page loaded right after connecting so the live view shows content.
        Navigation failures here are logged and ignored.
    reuse_existing:
        Reattach to the first existing context/page instead of creating new
        ones. Used when continuing a kept-alive session.
    """

    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.connect_over_cdp(connect_url)
    except Exception:
        playwright.stop()
        raise

    if reuse_existing and browser.contexts:
        context = browser.contexts[0]
        page = context.pages[0] if context.pages else context.new_page()
        return playwright, browser, context, page

    context = browser.new_context(
        viewport={"width": 1920, "height": 1080},
        user_agent=DESKTOP_USER_AGENT,
        ignore_https_errors=True,
        java_script_enabled=True,
        locale="en-US",
        timezone_id="America/New_York",
        extra_http_headers=EXTRA_HEADERS,
    )
    context.add_init_script(STEALTH_SCRIPT)
    page = context.new_page()

    if start_url:
        try:
            page.goto(start_url, wait_until="domcontentloaded", timeout=10000)
        except Exception as exc:
            logger.warning("⚠️ Initial navigation to %s failed: %s", start_url, exc)

    return playwright, browser, context, page


def shutdown(
    playwright: Optional[Playwright],
    browser: Optional[Browser],
    context: Optional[BrowserContext] = None,
) -> None:
    """Dispose of the local Playwright objects created by ``connect_remote``.

    This only drops the local connection; the remote session itself is
    released through the provider API.
    """

    try:
        if context:
            context.close()
    except Exception as exc:
        logger.debug("Context close failed: %s", exc)
    try:
        if browser:
            browser.close()
    except Exception as exc:
        logger.debug("Browser close failed: %s", exc)
    finally:
        if playwright:
            playwright.stop()
