"""Tests for the Publix weekly-ad scraper with a mocked browser."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from grocery_deals.core.exceptions import ResourceInitError
from grocery_deals.models.enums import DealType
from grocery_deals.scrapers.adapters.publix import PublixAdapter

from conftest import NOW


WEEKLY_AD_HTML = """
<html><body>
<div class="weekly-ad-container">
  <div class="bogo-deal">
    <h3 class="deal-title">Publix Bakery Bread</h3>
    <p class="description">Fresh baked daily</p>
    <span class="price">$4.99</span>
    <img src="https://img.publix.test/bread.jpg">
    <span class="category">Bakery</span>
  </div>
  <div data-deal-type="bogo">
    <h4>Oreo Cookies</h4>
    <span class="deal-price">$5.29</span>
  </div>
  <div class="bogo-deal">
    <p class="description">No title, skipped</p>
    <span class="price">$2.00</span>
  </div>
  <div class="sale-item">
    <h3 class="product-title">Boneless Chicken Breast</h3>
    <span class="was-price">$7.99</span>
    <span class="now-price">$5.99</span>
    <span class="deal-category">Meat</span>
  </div>
  <div class="weekly-ad-item">
    <h3 class="product-title">Bananas</h3>
    <span class="now-price">$0.59</span>
  </div>
  <div class="discount-deal">
    <h3 class="deal-title">Orange Juice</h3>
    <span class="original-price">$3.99</span>
    <span class="sale-price">$3.99</span>
  </div>
</div>
</body></html>
"""


def make_page(html: str = WEEKLY_AD_HTML) -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.content = AsyncMock(return_value=html)
    page.close = AsyncMock()
    return page


def make_browser(*pages) -> MagicMock:
    browser = MagicMock()
    browser.new_page = AsyncMock(side_effect=list(pages))
    browser.stop = AsyncMock()
    return browser


def make_adapter(browser) -> PublixAdapter:
    return PublixAdapter(browser_manager=browser, retry_wait=wait_none(), clock=lambda: NOW)


class TestScrapeDeals:

    async def test_extracts_bogo_and_discount_deals(self):
        page = make_page()
        adapter = make_adapter(make_browser(page))

        result = await adapter.scrape_deals()

        assert result.success is True
        assert result.error is None
        assert [d.title for d in result.deals] == [
            "Publix Bakery Bread",
            "Oreo Cookies",
            "Boneless Chicken Breast",
        ]

        bread = result.deals[0]
        assert bread.deal_type == DealType.BOGO
        assert bread.original_price == Decimal("4.99")
        assert bread.sale_price == Decimal("2.495")
        assert bread.description == "Fresh baked daily"
        assert bread.category == "Bakery"
        assert bread.image_url == "https://img.publix.test/bread.jpg"
        assert bread.valid_from == NOW
        assert bread.valid_until == NOW + timedelta(days=7)

        oreo = result.deals[1]
        assert oreo.description == "Oreo Cookies"
        assert oreo.category == "General"
        assert oreo.image_url is None

        chicken = result.deals[2]
        assert chicken.deal_type == DealType.DISCOUNT
        assert chicken.original_price == Decimal("7.99")
        assert chicken.sale_price == Decimal("5.99")
        assert chicken.category == "Meat"

    async def test_navigates_to_weekly_ad_and_closes_page(self):
        page = make_page()
        adapter = make_adapter(make_browser(page))

        await adapter.scrape_deals()

        page.goto.assert_awaited_once()
        assert page.goto.await_args.args[0] == "https://www.publix.com/savings/weekly-ad"
        assert page.goto.await_args.kwargs["timeout"] == 30000
        page.wait_for_selector.assert_awaited_once_with(
            ".weekly-ad-container, .deals-container, .ad-container", timeout=15000
        )
        page.close.assert_awaited_once()

    async def test_retries_then_succeeds(self):
        failing = make_page()
        failing.goto.side_effect = TimeoutError("navigation timed out")
        working = make_page()
        adapter = make_adapter(make_browser(failing, working))

        result = await adapter.scrape_deals()

        assert result.success is True
        failing.close.assert_awaited_once()
        working.close.assert_awaited_once()

    async def test_exhausted_attempts_return_failed_result(self):
        pages = [make_page() for _ in range(3)]
        for page in pages:
            page.wait_for_selector.side_effect = TimeoutError("selector not found")
        adapter = make_adapter(make_browser(*pages))

        result = await adapter.scrape_deals()

        assert result.success is False
        assert result.deals == []
        assert result.error == "selector not found"
        for page in pages:
            page.close.assert_awaited_once()

    async def test_browser_launch_failure_is_reported_not_raised(self):
        browser = MagicMock()
        browser.new_page = AsyncMock(side_effect=ResourceInitError("Failed to initialize browser"))
        adapter = make_adapter(browser)

        result = await adapter.scrape_deals()

        assert result.success is False
        assert "Failed to initialize browser" in result.error
        assert browser.new_page.await_count == 3

    async def test_empty_page_is_a_successful_empty_scrape(self):
        page = make_page("<html><div class='deals-container'></div></html>")
        adapter = make_adapter(make_browser(page))

        result = await adapter.scrape_deals()

        assert result.success is True
        assert result.deals == []


class TestLifecycle:

    async def test_cleanup_stops_browser(self):
        browser = make_browser()
        adapter = make_adapter(browser)

        await adapter.cleanup()

        browser.stop.assert_awaited_once()

    async def test_health_check(self):
        ok = make_adapter(make_browser(make_page()))
        assert await ok.health_check() is True

        broken_page = make_page()
        broken_page.goto.side_effect = TimeoutError("down")
        broken = make_adapter(make_browser(broken_page))
        assert await broken.health_check() is False
        broken_page.close.assert_awaited_once()

    def test_source_url(self):
        adapter = make_adapter(make_browser())
        assert adapter.source_url == "https://www.publix.com/savings/weekly-ad"
