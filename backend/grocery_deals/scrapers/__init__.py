"""Deal sources: the Kroger API adapter, the Publix scraper and their scheduler."""

from grocery_deals.scrapers.base import (
    BaseAdapter,
    BaseAPIAdapter,
    BaseScraperAdapter,
    CanonicalDeal,
    ScrapedDeal,
    ScrapingResult,
)

__all__ = [
    "BaseAdapter",
    "BaseAPIAdapter",
    "BaseScraperAdapter",
    "CanonicalDeal",
    "ScrapedDeal",
    "ScrapingResult",
]
