"""SQLAlchemy models for the grocery deal engine.

All models are imported here so metadata.create_all() sees every table.
"""

from grocery_deals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from grocery_deals.models.enums import DealType, StoreChain
from grocery_deals.models.deal import Deal, deal_store_locations
from grocery_deals.models.store_location import StoreLocation

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "DealType",
    "StoreChain",
    "Deal",
    "deal_store_locations",
    "StoreLocation",
]
