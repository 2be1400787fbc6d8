"""Publix weekly-ad scraper adapter.

Publix has no public deals API, so the weekly ad is rendered in Chromium and
the deal cards are read from the resulting HTML.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import structlog
from bs4 import BeautifulSoup
from playwright.async_api import Page

from grocery_deals.config import settings
from grocery_deals.models.enums import DealType, StoreChain
from grocery_deals.scrapers.base import BaseScraperAdapter, ScrapedDeal, ScrapingResult
from grocery_deals.scrapers.utils.browser_manager import BrowserManager
from grocery_deals.scrapers.utils.normalizer import DEFAULT_CATEGORY, PriceNormalizer
from grocery_deals.scrapers.utils.retry import scrape_retrying


logger = structlog.get_logger()

TITLE_SELECTOR = ".deal-title, .product-title, h3, h4"
DESCRIPTION_SELECTOR = ".deal-description, .product-description, .description"
CATEGORY_SELECTOR = ".category, .deal-category"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _text(card, selector: str) -> str:
    element = card.select_one(selector)
    return element.get_text(strip=True) if element else ""


class PublixAdapter(BaseScraperAdapter):
    """Publix weekly-ad scraper.

    The browser is launched on the first scrape and kept until cleanup().
    Calls to scrape_deals() on one instance are serialized.
    """

    store_chain = StoreChain.PUBLIX

    SOURCE_URL = "https://www.publix.com/savings/weekly-ad"
    WAIT_SELECTOR = ".weekly-ad-container, .deals-container, .ad-container"
    BOGO_SELECTOR = '[data-deal-type="bogo"], .bogo-deal, .buy-one-get-one'
    DISCOUNT_SELECTOR = ".discount-deal, .sale-item, .weekly-ad-item"
    NAVIGATION_TIMEOUT_MS = 30000
    WAIT_TIMEOUT_MS = 15000
    MAX_ATTEMPTS = 3
    DEAL_VALIDITY = timedelta(days=7)

    def __init__(
        self,
        browser_manager: Optional[BrowserManager] = None,
        retry_wait=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the Publix adapter.

        Args:
            browser_manager: Browser owner, defaults to one honoring PUBLIX_HEADLESS
            retry_wait: tenacity wait strategy between attempts
            clock: Returns the current aware datetime, used for validity windows
        """
        super().__init__()
        self.browser_manager = browser_manager or BrowserManager(headless=settings.PUBLIX_HEADLESS)
        self._retry_wait = retry_wait
        self._clock = clock
        self._lock = asyncio.Lock()
        self.logger = logger.bind(adapter=self.store_chain.value)

    async def scrape_deals(self) -> ScrapingResult:
        """Scrape the weekly ad with up to MAX_ATTEMPTS attempts.

        Returns:
            ScrapingResult; on exhaustion success is False and error carries
            the last failure message
        """
        async with self._lock:
            try:
                async for attempt in scrape_retrying(
                    attempts=self.MAX_ATTEMPTS, wait=self._retry_wait
                ):
                    with attempt:
                        self.logger.info(
                            "publix_scrape_attempt",
                            attempt=attempt.retry_state.attempt_number,
                            max_attempts=self.MAX_ATTEMPTS,
                        )
                        deals = await self._scrape_once()
            except Exception as e:
                self.logger.error(
                    "publix_scrape_failed",
                    error=str(e),
                    max_attempts=self.MAX_ATTEMPTS,
                )
                return ScrapingResult(
                    success=False,
                    deals=[],
                    error=str(e) or type(e).__name__,
                    scraped_at=self._clock(),
                )

        return ScrapingResult(success=True, deals=deals, scraped_at=self._clock())

    async def _scrape_once(self) -> List[ScrapedDeal]:
        """One attempt: fresh page, navigate, parse. The page is always closed."""
        page = await self.browser_manager.new_page()
        try:
            html = await self._load_weekly_ad(page)
        finally:
            await page.close()

        soup = BeautifulSoup(html, "html.parser")
        bogo_deals = self._extract_bogo_deals(soup)
        discount_deals = self._extract_discount_deals(soup)

        self.logger.info(
            "publix_deals_scraped",
            total=len(bogo_deals) + len(discount_deals),
            bogo_count=len(bogo_deals),
            discount_count=len(discount_deals),
        )
        return bogo_deals + discount_deals

    async def _load_weekly_ad(self, page: Page) -> str:
        await page.goto(
            self.SOURCE_URL,
            wait_until="networkidle",
            timeout=self.NAVIGATION_TIMEOUT_MS,
        )
        await page.wait_for_selector(self.WAIT_SELECTOR, timeout=self.WAIT_TIMEOUT_MS)
        return await page.content()

    def _validity_window(self):
        valid_from = self._clock()
        return valid_from, valid_from + self.DEAL_VALIDITY

    def _extract_bogo_deals(self, soup: BeautifulSoup) -> List[ScrapedDeal]:
        """Read buy-one-get-one cards. The sale price is half the listed price."""
        valid_from, valid_until = self._validity_window()
        deals = []

        for card in soup.select(self.BOGO_SELECTOR):
            try:
                title = _text(card, TITLE_SELECTOR)
                price_element = card.select_one(".price, .deal-price, .original-price")
                if not title or price_element is None:
                    continue

                original = PriceNormalizer.clean_price_string(
                    price_element.get_text(strip=True)
                ) or Decimal("0")

                deals.append(
                    ScrapedDeal(
                        title=title,
                        description=_text(card, DESCRIPTION_SELECTOR) or title,
                        original_price=original,
                        sale_price=original / 2,
                        deal_type=DealType.BOGO,
                        valid_from=valid_from,
                        valid_until=valid_until,
                        category=_text(card, CATEGORY_SELECTOR) or DEFAULT_CATEGORY,
                        image_url=self._image_url(card),
                    )
                )
            except Exception as e:
                self.logger.warning("failed_to_parse_bogo_card", error=str(e))

        return deals

    def _extract_discount_deals(self, soup: BeautifulSoup) -> List[ScrapedDeal]:
        """Read sale cards that show both a was-price and a now-price."""
        valid_from, valid_until = self._validity_window()
        deals = []

        for card in soup.select(self.DISCOUNT_SELECTOR):
            try:
                title = _text(card, TITLE_SELECTOR)
                if not title:
                    continue

                original = PriceNormalizer.clean_price_string(
                    _text(card, ".original-price, .was-price")
                )
                sale = PriceNormalizer.clean_price_string(
                    _text(card, ".sale-price, .now-price, .deal-price")
                )
                if original is None or sale is None or sale <= 0 or sale >= original:
                    continue

                deals.append(
                    ScrapedDeal(
                        title=title,
                        description=_text(card, DESCRIPTION_SELECTOR) or title,
                        original_price=original,
                        sale_price=sale,
                        deal_type=DealType.DISCOUNT,
                        valid_from=valid_from,
                        valid_until=valid_until,
                        category=_text(card, CATEGORY_SELECTOR) or DEFAULT_CATEGORY,
                        image_url=self._image_url(card),
                    )
                )
            except Exception as e:
                self.logger.warning("failed_to_parse_discount_card", error=str(e))

        return deals

    @staticmethod
    def _image_url(card) -> Optional[str]:
        img = card.select_one("img")
        if img is None:
            return None
        return img.get("src") or img.get("data-src") or None

    async def cleanup(self) -> None:
        """Close the browser. The next scrape launches a new one."""
        await self.browser_manager.stop()
        self.logger.info("publix_cleanup_complete")

    async def health_check(self) -> bool:
        """Check that the weekly ad loads and shows its deal container."""
        try:
            page = await self.browser_manager.new_page()
            try:
                await self._load_weekly_ad(page)
            finally:
                await page.close()
            return True
        except Exception as e:
            self.logger.error("publix_health_check_failed", error=str(e))
            return False
