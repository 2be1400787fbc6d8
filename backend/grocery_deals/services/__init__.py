"""Business logic services."""

from grocery_deals.services.aggregator import (
    AggregationResult,
    AggregationStats,
    CleanupResult,
    DealAggregator,
)
from grocery_deals.services.persistence import PersistenceGateway, SQLAlchemyPersistenceGateway
from grocery_deals.services.price_comparison import PriceComparison, PriceComparisonService

__all__ = [
    "AggregationResult",
    "AggregationStats",
    "CleanupResult",
    "DealAggregator",
    "PersistenceGateway",
    "SQLAlchemyPersistenceGateway",
    "PriceComparison",
    "PriceComparisonService",
]
