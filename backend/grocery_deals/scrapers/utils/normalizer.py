"""Deal validation and normalization into the canonical shape."""

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

import structlog

from grocery_deals.core.exceptions import DealValidationError
from grocery_deals.models.enums import StoreChain
from grocery_deals.scrapers.base import CanonicalDeal, ScrapedDeal

logger = structlog.get_logger()

CENT = Decimal("0.01")
DEFAULT_CATEGORY = "General"

_DOLLAR_PATTERN = re.compile(r"\$?\s*(\d+(?:,\d{3})*(?:\.\d+)?)")


def to_decimal(value: Any) -> Decimal:
    """Convert JSON numbers and strings to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def round_cents(value: Decimal) -> Decimal:
    """Round a money amount to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount_percentage(original: Decimal, sale: Decimal) -> Decimal:
    """Discount percentage rounded to 2 decimal places, never negative.

    Returns 0 when the original price is not positive.
    """
    original = to_decimal(original)
    sale = to_decimal(sale)
    if original <= 0:
        return Decimal("0.00")
    pct = ((original - sale) / original * 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return max(pct, Decimal("0.00"))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Express a datetime in UTC.

    Naive values are taken to be UTC already (SQLite hands them back without
    tzinfo).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PriceNormalizer:
    """Price parsing utilities for scraped text."""

    @staticmethod
    def clean_price_string(raw: Optional[str]) -> Optional[Decimal]:
        """Extract the first number from a price string.

        Handles:
        - "$4.99" -> 4.99
        - "Save $1,299.00" -> 1299.00
        - "2 for $5" -> 2 (first number wins, like the weekly ad markup)

        Returns:
            Decimal price, or None if no number is present
        """
        if not raw:
            return None
        match = _DOLLAR_PATTERN.search(raw)
        if not match:
            return None
        try:
            return Decimal(match.group(1).replace(",", ""))
        except InvalidOperation:
            return None


class DealValidator:
    """Checks the canonical deal invariants and reports every violation."""

    @staticmethod
    def validate(deal: CanonicalDeal) -> List[str]:
        """Return the list of failed rules, empty when the deal is valid."""
        errors: List[str] = []

        if not deal.title or not deal.title.strip():
            errors.append("Title is required")

        original = deal.original_price
        sale = deal.sale_price

        if original is None or original <= 0:
            errors.append("Original price must be greater than 0")

        if sale is None or sale <= 0:
            errors.append("Sale price must be greater than 0")

        if original is not None and sale is not None and sale > original:
            errors.append("Sale price cannot be greater than original price")

        if not deal.valid_from or not deal.valid_until:
            errors.append("Valid dates are required")
        elif ensure_utc(deal.valid_from) >= ensure_utc(deal.valid_until):
            errors.append("Valid from date must be before valid until date")

        return errors

    @classmethod
    def validate_or_raise(cls, deal: CanonicalDeal) -> None:
        """Raise DealValidationError carrying every failed rule."""
        errors = cls.validate(deal)
        if errors:
            raise DealValidationError(errors)


class DealNormalizer:
    """Turns validated source data into clean canonical deals."""

    @staticmethod
    def normalize(deal: CanonicalDeal, store_locations: Sequence[Any] = ()) -> CanonicalDeal:
        """Trim text, round prices, recompute the discount and attach locations.

        The deal must already have passed DealValidator.
        """
        title = deal.title.strip()
        original = round_cents(deal.original_price)
        sale = round_cents(deal.sale_price)

        return CanonicalDeal(
            store_chain=deal.store_chain,
            title=title,
            description=(deal.description or "").strip() or title,
            original_price=original,
            sale_price=sale,
            discount_percentage=calculate_discount_percentage(original, sale),
            deal_type=deal.deal_type,
            valid_from=ensure_utc(deal.valid_from),
            valid_until=ensure_utc(deal.valid_until),
            category=(deal.category or "").strip() or DEFAULT_CATEGORY,
            item_ids=[i.strip() for i in (deal.item_ids or []) if i and i.strip()],
            restrictions=(deal.restrictions or "").strip() or None,
            image_url=deal.image_url or None,
            external_id=deal.external_id,
            store_id=deal.store_id,
            store_locations=list(store_locations),
            source_url=deal.source_url,
            scraped_at=deal.scraped_at,
        )

    @staticmethod
    def from_scraped(
        scraped: ScrapedDeal,
        store_chain: StoreChain,
        source_url: Optional[str] = None,
        scraped_at: Optional[datetime] = None,
    ) -> CanonicalDeal:
        """Convert a scraped weekly-ad deal into the canonical shape."""
        return CanonicalDeal(
            store_chain=store_chain,
            title=scraped.title,
            description=scraped.description,
            original_price=scraped.original_price,
            sale_price=scraped.sale_price,
            discount_percentage=calculate_discount_percentage(
                scraped.original_price, scraped.sale_price
            ),
            deal_type=scraped.deal_type,
            valid_from=scraped.valid_from,
            valid_until=scraped.valid_until,
            category=scraped.category,
            item_ids=[],  # Weekly ads carry no item ids
            restrictions=scraped.restrictions,
            image_url=scraped.image_url,
            source_url=source_url,
            scraped_at=scraped_at,
        )
