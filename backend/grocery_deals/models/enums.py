"""Enumerations shared by the ORM models and the scraper layer."""

from enum import Enum


class StoreChain(str, Enum):
    """Retailer brands the engine ingests deals for."""

    PUBLIX = "publix"
    KROGER = "kroger"


class DealType(str, Enum):
    """How a deal discounts the item."""

    BOGO = "bogo"
    DISCOUNT = "discount"
    COUPON = "coupon"
