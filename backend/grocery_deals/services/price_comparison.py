"""Cross-store price comparison.

Compares the current deals for an item across the stores near a location and
picks a best value, preferring a nearer store when prices are close.
"""

import asyncio
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import structlog

from grocery_deals.config import settings
from grocery_deals.scrapers.utils.normalizer import to_decimal
from grocery_deals.services.geo import haversine_miles
from grocery_deals.services.persistence import PersistenceGateway

logger = structlog.get_logger(__name__)

NEARBY_DEAL_LIMIT = 100


@dataclass
class StorePrice:
    """Cheapest matching deal of one store for one item."""

    store_id: str
    store_name: str
    price: Decimal
    original_price: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    deal_type: Optional[str] = None
    distance_miles: Optional[float] = None
    valid_until: Optional[datetime] = None


@dataclass
class BestValue:
    store_id: str
    store_name: str
    price: Decimal
    distance_miles: Optional[float] = None


@dataclass
class PriceComparison:
    item_id: str
    item_name: str
    stores: List[StorePrice]
    best_value: BestValue
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RecommendedStore:
    store_id: str
    store_name: str
    total_savings: Decimal
    distance_miles: Optional[float] = None


@dataclass
class ShoppingListRecommendation:
    """Best single store for a list, with the per-item comparisons behind it."""

    recommended_store: Optional[RecommendedStore]
    item_comparisons: List[PriceComparison]
    total_cost: Dict[str, Decimal]


def _distance_key(distance: Optional[float]) -> float:
    return math.inf if distance is None else distance


class PriceComparisonService:
    """Location-scoped price comparison over persisted deals.

    Two tie bands trade price for distance: among item prices within
    ``price_tie_band`` of the cheapest the nearest store wins, and a shopping
    list moves to a strictly nearer store when its total is within
    ``list_tie_band`` of the cheapest total.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        price_tie_band: Optional[Decimal] = None,
        list_tie_band: Optional[Decimal] = None,
        default_radius_miles: Optional[float] = None,
    ):
        """Initialize the service.

        Args:
            gateway: Persistence gateway used to find nearby deals
            price_tie_band: Per-item price band for the distance tie-break
            list_tie_band: Shopping-list total band for the distance tie-break
            default_radius_miles: Search radius when callers give none
        """
        self.gateway = gateway
        self.price_tie_band = to_decimal(
            settings.PRICE_TIE_BAND if price_tie_band is None else price_tie_band
        )
        self.list_tie_band = to_decimal(
            settings.LIST_TIE_BAND if list_tie_band is None else list_tie_band
        )
        self.default_radius_miles = (
            settings.DEFAULT_SEARCH_RADIUS_MILES if default_radius_miles is None else default_radius_miles
        )
        self.logger = logger.bind(service="price_comparison")

    async def compare_item_prices(
        self,
        item_name: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_miles: Optional[float] = None,
    ) -> Optional[PriceComparison]:
        """Compare one item's prices across the stores near a location.

        Args:
            item_name: Text matched against deal titles and descriptions
            latitude: Query latitude in decimal degrees
            longitude: Query longitude in decimal degrees
            radius_miles: Search radius, defaults to the configured radius

        Returns:
            PriceComparison, or None without a location or without matches
        """
        if latitude is None or longitude is None:
            return None

        radius = self.default_radius_miles if radius_miles is None else radius_miles
        deals = await self.gateway.find_deals_near(
            latitude, longitude, radius, limit=NEARBY_DEAL_LIMIT
        )

        needle = item_name.lower()
        matches = [
            d for d in deals
            if needle in d.title.lower() or needle in (d.description or "").lower()
        ]
        if not matches:
            self.logger.debug("no_deals_for_item", item_name=item_name)
            return None

        # Cheapest deal per store; the first one seen wins a price tie
        cheapest = {}
        for deal in matches:
            key = (deal.store_id, deal.store_chain)
            if key not in cheapest or deal.sale_price < cheapest[key].sale_price:
                cheapest[key] = deal

        stores = []
        for deal in cheapest.values():
            distances = [
                haversine_miles(latitude, longitude, loc.latitude, loc.longitude)
                for loc in deal.store_locations
                if loc.is_active
            ]
            stores.append(
                StorePrice(
                    store_id=deal.store_id,
                    store_name=str(deal.store_chain),
                    price=to_decimal(deal.sale_price),
                    original_price=to_decimal(deal.original_price),
                    discount_percentage=to_decimal(deal.discount_percentage),
                    deal_type=deal.deal_type,
                    distance_miles=min(distances) if distances else None,
                    valid_until=deal.valid_until,
                )
            )
        stores.sort(key=lambda s: s.price)

        return PriceComparison(
            item_id=self.generate_item_id(item_name),
            item_name=item_name,
            stores=stores,
            best_value=self.find_best_value(stores),
        )

    def find_best_value(self, stores: Sequence[StorePrice]) -> BestValue:
        """Pick the best store among per-store prices.

        Prices within the tie band of the cheapest compete on distance (an
        unknown distance loses); an exact distance tie keeps the cheaper.
        """
        if not stores:
            return BestValue(store_id="", store_name="", price=Decimal("0"))

        lowest = min(s.price for s in stores)
        contenders = [s for s in stores if s.price - lowest <= self.price_tie_band]
        best = min(contenders, key=lambda s: (_distance_key(s.distance_miles), s.price))

        return BestValue(
            store_id=best.store_id,
            store_name=best.store_name,
            price=best.price,
            distance_miles=best.distance_miles,
        )

    async def compare_multiple_items(
        self,
        item_names: Sequence[str],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_miles: Optional[float] = None,
    ) -> List[PriceComparison]:
        """Compare several items concurrently, dropping items without matches."""
        comparisons = await asyncio.gather(
            *(
                self.compare_item_prices(name, latitude, longitude, radius_miles)
                for name in item_names
            )
        )
        return [c for c in comparisons if c is not None]

    async def get_best_store_for_list(
        self,
        item_names: Sequence[str],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_miles: Optional[float] = None,
    ) -> ShoppingListRecommendation:
        """Recommend one store for a whole shopping list.

        Totals are summed per store over every item it has a deal for. The
        store with the lowest total is chosen unless another store within
        the list tie band is strictly nearer.

        Returns:
            ShoppingListRecommendation; recommended_store is None when no
            item matched
        """
        comparisons = await self.compare_multiple_items(
            item_names, latitude, longitude, radius_miles
        )

        totals: Dict[str, Dict] = {}
        for comparison in comparisons:
            for store in comparison.stores:
                entry = totals.setdefault(
                    store.store_id,
                    {
                        "name": store.store_name,
                        "cost": Decimal("0"),
                        "savings": Decimal("0"),
                        "distance": None,
                    },
                )
                entry["cost"] += store.price
                if store.original_price is not None:
                    entry["savings"] += store.original_price - store.price
                if store.distance_miles is not None and (
                    entry["distance"] is None or store.distance_miles < entry["distance"]
                ):
                    entry["distance"] = store.distance_miles

        recommended = None
        if totals:
            chosen_id = min(totals, key=lambda sid: totals[sid]["cost"])
            lowest_cost = totals[chosen_id]["cost"]

            for store_id, entry in totals.items():
                if entry["cost"] - lowest_cost > self.list_tie_band:
                    continue
                closer = _distance_key(entry["distance"]) < _distance_key(totals[chosen_id]["distance"])
                same_distance_cheaper = (
                    _distance_key(entry["distance"]) == _distance_key(totals[chosen_id]["distance"])
                    and entry["cost"] < totals[chosen_id]["cost"]
                )
                if closer or same_distance_cheaper:
                    chosen_id = store_id

            chosen = totals[chosen_id]
            recommended = RecommendedStore(
                store_id=chosen_id,
                store_name=chosen["name"],
                total_savings=chosen["savings"],
                distance_miles=chosen["distance"],
            )

        self.logger.info(
            "shopping_list_compared",
            items=len(item_names),
            matched_items=len(comparisons),
            stores=len(totals),
            recommended_store=recommended.store_id if recommended else None,
        )

        return ShoppingListRecommendation(
            recommended_store=recommended,
            item_comparisons=comparisons,
            total_cost={store_id: entry["cost"] for store_id, entry in totals.items()},
        )

    @staticmethod
    def generate_item_id(item_name: str) -> str:
        """Stable slug for an item name: lowercase, non-alphanumerics as single dashes."""
        slug = re.sub(r"[^a-z0-9]", "-", item_name.lower())
        return re.sub(r"-+", "-", slug).strip("-")
