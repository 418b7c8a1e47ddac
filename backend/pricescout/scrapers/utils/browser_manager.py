"""Playwright browser lifecycle with per-identity, single-use contexts."""

import asyncio
import json
from typing import Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .identity import Identity

logger = structlog.get_logger(__name__)


# Minimal stealth JS to mask automation signals; languages are filled in per identity
STEALTH_JS_TEMPLATE = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => %(languages)s });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""

BLOCKED_RESOURCES = "**/*.{png,jpg,jpeg,gif,webp,svg,woff,woff2,ttf,eot,mp4}"


def stealth_script(identity: Identity) -> str:
    """Stealth init script whose navigator.languages agrees with the identity."""
    primary = identity.locale
    languages = [primary, primary.split("-")[0]]
    if "en" not in languages:
        languages.append("en")
    return STEALTH_JS_TEMPLATE % {"languages": json.dumps(languages)}


class BrowserManager:
    """Owns one Chromium process and hands out fresh contexts.

    Contexts are never pooled: every crawl session gets its own context
    built from its identity and closes it when done. The caller owns
    start/stop; nothing here is a module-level singleton.
    """

    def __init__(self, headless: bool = True, block_resources: bool = True):
        self._headless = headless
        self._block_resources = block_resources
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        """Launch the browser. Safe to call more than once."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                ],
            )
            logger.info("browser_started", headless=self._headless)

    async def stop(self) -> None:
        """Close the browser and the Playwright driver."""
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")

    async def new_context(self, identity: Identity) -> BrowserContext:
        """Create a browser context that presents ``identity``."""
        if not self._browser:
            await self.start()

        context = await self._browser.new_context(**identity.context_options())
        try:
            await context.add_init_script(stealth_script(identity))
            if self._block_resources:
                await context.route(BLOCKED_RESOURCES, lambda route: route.abort())
        except BaseException:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.warning("browser_context_close_failed", identity_id=identity.identity_id, error=str(e))
            raise

        logger.debug(
            "browser_context_created",
            identity_id=identity.identity_id,
            routed=identity.routed,
        )
        return context
