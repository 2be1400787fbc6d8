"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read at import time; keep tests off any real database or API
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KROGER_CLIENT_ID", "test-client-id")
os.environ.setdefault("KROGER_CLIENT_SECRET", "test-client-secret")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grocery_deals.models import Base, DealType, StoreChain, StoreLocation
from grocery_deals.scrapers.base import CanonicalDeal
from grocery_deals.services.persistence import SQLAlchemyPersistenceGateway


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

# Downtown Atlanta, used as the shopper's location in comparison tests
ATLANTA = (33.7490, -84.3880)


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture
def gateway(session_factory) -> SQLAlchemyPersistenceGateway:
    """Persistence gateway whose clock is pinned to NOW."""
    return SQLAlchemyPersistenceGateway(session_factory, clock=lambda: NOW)


@pytest_asyncio.fixture
async def kroger_stores(session_factory):
    """Two active Kroger stores near downtown Atlanta and one inactive store."""
    stores = [
        StoreLocation(
            store_chain=StoreChain.KROGER.value,
            name="Kroger Ponce de Leon",
            address="725 Ponce De Leon Ave NE, Atlanta, GA",
            latitude=33.7726,
            longitude=-84.3655,
            hours={"monday": {"open": "06:00", "close": "23:00", "is_closed": False}},
        ),
        StoreLocation(
            store_chain=StoreChain.KROGER.value,
            name="Kroger Midtown",
            address="1700 Monroe Dr NE, Atlanta, GA",
            latitude=33.8006,
            longitude=-84.3686,
        ),
        StoreLocation(
            store_chain=StoreChain.KROGER.value,
            name="Kroger Closed",
            address="1 Nowhere Rd, Atlanta, GA",
            latitude=33.7500,
            longitude=-84.3900,
            is_active=False,
        ),
    ]
    async with session_factory() as session:
        session.add_all(stores)
        await session.commit()
    return stores


@pytest_asyncio.fixture
async def publix_stores(session_factory):
    """One active Publix store in Atlanta."""
    store = StoreLocation(
        store_chain=StoreChain.PUBLIX.value,
        name="Publix Ansley Mall",
        address="1544 Piedmont Ave NE, Atlanta, GA",
        latitude=33.7971,
        longitude=-84.3712,
    )
    async with session_factory() as session:
        session.add(store)
        await session.commit()
    return [store]


def make_deal(**overrides) -> CanonicalDeal:
    """A valid Kroger canonical deal; keyword arguments override fields."""
    fields = dict(
        store_chain=StoreChain.KROGER,
        title="Whole Milk 1 Gallon",
        description="Kroger whole milk",
        original_price=Decimal("4.29"),
        sale_price=Decimal("3.49"),
        deal_type=DealType.DISCOUNT,
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=6),
        category="Dairy",
        item_ids=["0001111041700"],
    )
    fields.update(overrides)
    return CanonicalDeal(**fields)


@pytest.fixture
def deal_factory():
    """Factory for valid canonical deals."""
    return make_deal
