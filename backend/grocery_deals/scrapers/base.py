"""Base source adapter interface and the data shapes adapters emit.

Kroger is reached through a REST API and already emits canonical-shaped
deals. Publix is scraped and emits ``ScrapedDeal`` objects that the
normalizer converts later.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

import structlog

from grocery_deals.models.enums import DealType, StoreChain


@dataclass
class CanonicalDeal:
    """Source-independent deal shape that flows through the aggregator.

    Validation is not done here: the aggregator needs every failed rule
    itemized, so it runs ``DealValidator`` explicitly.
    """

    store_chain: StoreChain
    title: str
    original_price: Decimal
    sale_price: Decimal
    deal_type: DealType
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    description: str = ""
    discount_percentage: Decimal = Decimal("0")
    category: str = "General"
    item_ids: List[str] = field(default_factory=list)
    restrictions: Optional[str] = None
    image_url: Optional[str] = None
    external_id: Optional[str] = None  # Source-assigned id when the source has one
    store_id: str = ""
    store_locations: List[Any] = field(default_factory=list)  # StoreLocation rows
    source_url: Optional[str] = None
    scraped_at: Optional[datetime] = None

    def __post_init__(self):
        """Default the chain-level store key."""
        if not self.store_id:
            self.store_id = f"{self.store_chain.value}-default"


@dataclass
class ScrapedDeal:
    """Deal as read off a weekly-ad page, before normalization."""

    title: str
    description: str
    original_price: Decimal
    sale_price: Decimal
    deal_type: DealType
    valid_from: datetime
    valid_until: datetime
    category: str = "General"
    restrictions: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class ScrapingResult:
    """Outcome of one scrape call. Scrapers report failure here instead of raising."""

    success: bool
    deals: List[ScrapedDeal] = field(default_factory=list)
    error: Optional[str] = None
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseAdapter(ABC):
    """Abstract base class for all deal sources (API and scraper).

    Adapters can be API-based or scraper-based, distinguished by adapter_type.
    """

    store_chain: StoreChain  # Must be overridden in subclass
    adapter_type: str = ""  # 'api' or 'scraper'
    SOURCE_URL: str = ""

    def __init__(self):
        self.logger = structlog.get_logger(adapter=self.store_chain.value)

    @property
    def source_url(self) -> str:
        """URL recorded on deals ingested from this source."""
        return self.SOURCE_URL

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if this adapter can reach its data source.

        Returns:
            True if healthy, False otherwise
        """


class BaseAPIAdapter(BaseAdapter):
    """Base class for API-based adapters.

    The httpx.AsyncClient may be injected; otherwise one is created lazily
    and owned by the adapter.
    """

    adapter_type = "api"

    def __init__(self, http_client=None):
        super().__init__()
        self.http_client = http_client

    @abstractmethod
    async def fetch_deals(self, location_id: Optional[str] = None) -> List[CanonicalDeal]:
        """Fetch current deals from this source.

        Args:
            location_id: Optional source-specific store location filter

        Returns:
            List of CanonicalDeal objects
        """


class BaseScraperAdapter(BaseAdapter):
    """Base class for scraping-based adapters using Playwright."""

    adapter_type = "scraper"

    @abstractmethod
    async def scrape_deals(self) -> ScrapingResult:
        """Scrape current deals. Must not raise; failures go in the result."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release the browser and any other long-lived resources."""
