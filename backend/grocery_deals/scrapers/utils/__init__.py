"""Scraper utilities."""

from grocery_deals.scrapers.utils.browser_manager import BrowserManager
from grocery_deals.scrapers.utils.normalizer import DealNormalizer, DealValidator, PriceNormalizer
from grocery_deals.scrapers.utils.rate_limiter import FixedWindowRateLimiter

__all__ = [
    "BrowserManager",
    "DealNormalizer",
    "DealValidator",
    "PriceNormalizer",
    "FixedWindowRateLimiter",
]
