"""Source adapters, one per store chain."""

from grocery_deals.scrapers.adapters.kroger import KrogerAdapter
from grocery_deals.scrapers.adapters.publix import PublixAdapter

__all__ = ["KrogerAdapter", "PublixAdapter"]
