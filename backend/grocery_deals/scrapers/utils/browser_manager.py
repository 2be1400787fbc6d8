"""Playwright browser lifecycle manager.

One browser is launched lazily and reused across scrape calls to amortize
launch cost between scheduled runs. Pages are handed out per call and the
caller is responsible for closing them.
"""

import asyncio
from typing import Iterable, Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright

from grocery_deals.core.exceptions import ResourceInitError

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

# Subresource types that never matter for text extraction
BLOCKED_RESOURCE_TYPES = frozenset({"stylesheet", "font", "media"})


class BrowserManager:
    """Owns a Playwright browser: lazy start, explicit stop.

    Not safe for concurrent use by several scrapers that each expect their
    own browser; share one manager per scraper instance.
    """

    def __init__(
        self,
        headless: bool = True,
        blocked_resource_types: Iterable[str] = BLOCKED_RESOURCE_TYPES,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._headless = headless
        self._blocked_resource_types = frozenset(blocked_resource_types)
        self._user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        """Launch the browser if it is not running yet.

        Raises:
            ResourceInitError: If Playwright cannot launch Chromium
        """
        async with self._lock:
            if self._browser:
                return
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self._headless,
                    args=[
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                    ],
                )
                self._context = await self._browser.new_context(
                    user_agent=self._user_agent,
                    viewport={"width": 1920, "height": 1080},
                )
            except Exception as e:
                logger.error("browser_launch_failed", error=str(e))
                await self._release()
                raise ResourceInitError(f"Failed to initialize browser for scraping: {e}") from e
            logger.info("browser_started", headless=self._headless)

    async def stop(self) -> None:
        """Close the context, the browser and the Playwright driver."""
        async with self._lock:
            was_running = self._browser is not None
            await self._release()
            if was_running:
                logger.info("browser_stopped")

    async def _release(self) -> None:
        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                logger.warning("browser_context_close_failed", error=str(e))
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def new_page(self) -> Page:
        """Open a fresh page that aborts blocked subresource types."""
        if not self._browser:
            await self.start()

        page = await self._context.new_page()
        if self._blocked_resource_types:
            await page.route("**/*", self._route_request)
        return page

    async def _route_request(self, route: Route) -> None:
        if route.request.resource_type in self._blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()
