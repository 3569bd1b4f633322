"""Camoufox persistent browser contexts and shared page helpers."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page

from ..config import BROWSER_HEADLESS, BROWSER_TIMEOUT
from ..models.session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class PersistentBrowser:
    """One Camoufox instance whose profile lives in ``user_data_dir``.

    Cookies and storage survive in the directory, so a human who logs in once
    keeps the session for as long as the directory exists.
    """

    def __init__(self, user_data_dir: Path, headless: Optional[bool] = None):
        self.user_data_dir = user_data_dir
        self.headless = headless if headless is not None else BROWSER_HEADLESS
        self._camoufox: Optional[AsyncCamoufox] = None
        self.context: Optional[BrowserContext] = None

    async def start(self) -> BrowserContext:
        logger.info(f"Launching Camoufox (headless={self.headless}, profile={self.user_data_dir.name})...")
        self._camoufox = AsyncCamoufox(
            headless=self.headless,
            humanize=True,
            persistent_context=True,
            user_data_dir=str(self.user_data_dir),
        )
        self.context = await self._camoufox.__aenter__()
        self.context.set_default_timeout(BROWSER_TIMEOUT)
        return self.context

    async def close(self):
        """Close the context, then the Camoufox launcher, even if the first fails."""
        try:
            if self.context:
                await self.context.close()
        finally:
            self.context = None
            camoufox, self._camoufox = self._camoufox, None
            if camoufox:
                await camoufox.__aexit__(None, None, None)


# ── Page helpers ─────────────────────────────────────────────────────────────


def get_active_page(session: Session) -> Page:
    """Follow the newest open tab; logins often open one."""
    pages = [p for p in session.context.pages if not p.is_closed()]
    if not pages:
        return session.page
    session.page = pages[-1]
    return session.page


async def ensure_page(session: Session, base_url: str) -> Page:
    """Return the session's page, opening a fresh one if it was closed."""
    if session.page is not None and not session.page.is_closed():
        return session.page
    page = await session.context.new_page()
    await goto(page, base_url)
    session.page = page
    return page


async def goto(page: Page, url: str):
    """Navigate, retrying with a looser wait condition on timeout."""
    try:
        await page.goto(url, wait_until="domcontentloaded", timeout=BROWSER_TIMEOUT)
    except Exception as e:
        logger.warning(f"Navigation to {url} timed out, retrying with commit: {e}")
        await page.goto(url, wait_until="commit", timeout=BROWSER_TIMEOUT * 2)


async def wait_for_results(page: Page, selector: str, timeout_ms: int = 8000) -> bool:
    """Wait for the first result link. Returns False if none appeared in time."""
    try:
        await page.wait_for_selector(selector, timeout=timeout_ms)
        return True
    except Exception:
        logger.info(f"Selector '{selector}' not found within {timeout_ms}ms, proceeding anyway")
        return False


async def scroll_for_results(
    page: Page,
    selector: str,
    times: int,
    wheel_px: int = 2400,
    settle_s: float = 1.0,
    stall_s: float = 0.8,
) -> int:
    """Scroll ``times`` times to trigger lazy loading. Returns the final result count."""
    locator = page.locator(selector)
    last_count = await locator.count()
    for i in range(times):
        await page.mouse.wheel(0, wheel_px)
        await asyncio.sleep(settle_s)
        count = await locator.count()
        logger.info(f"Scroll {i + 1}/{times}: results {last_count} -> {count}")
        if count == last_count:
            await asyncio.sleep(stall_s)
        last_count = count
    return last_count
