"""Persistence gateway for deals and store locations.

The aggregator and the price comparison service only talk to the
``PersistenceGateway`` protocol. ``SQLAlchemyPersistenceGateway`` is the
relational implementation; it opens one session per operation so it can be
shared by concurrent aggregation tasks.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from grocery_deals.models.deal import Deal, deal_store_locations
from grocery_deals.models.enums import StoreChain
from grocery_deals.models.store_location import StoreLocation
from grocery_deals.scrapers.base import CanonicalDeal
from grocery_deals.services.geo import bounding_box, haversine_miles

logger = structlog.get_logger(__name__)

# Columns update_deal() is allowed to touch
UPDATABLE_FIELDS = frozenset({
    "title",
    "description",
    "original_price",
    "sale_price",
    "discount_percentage",
    "valid_from",
    "valid_until",
    "category",
    "item_ids",
    "restrictions",
    "image_url",
    "is_active",
    "scraped_at",
    "source_url",
})

# Columns an update may explicitly clear
NULLABLE_FIELDS = frozenset({"restrictions", "image_url", "scraped_at", "source_url"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceGateway(Protocol):
    """Storage operations the engine depends on."""

    async def create_deal(self, deal: CanonicalDeal) -> Deal: ...

    async def update_deal(self, deal_id: UUID, fields: Dict[str, Any]) -> Optional[Deal]: ...

    async def find_stores_by_chain(self, chain: StoreChain) -> List[StoreLocation]: ...

    async def find_expired_deals(self) -> List[Deal]: ...

    async def delete_deal(self, deal_id: UUID) -> bool: ...

    async def associate_deal_with_stores(
        self, deal_id: UUID, store_location_ids: Sequence[UUID]
    ) -> None: ...

    async def find_matching_deal(self, deal: CanonicalDeal) -> Optional[Deal]: ...

    async def find_deals_near(
        self,
        latitude: float,
        longitude: float,
        radius_miles: float,
        limit: int = 100,
    ) -> List[Deal]: ...


class SQLAlchemyPersistenceGateway:
    """PersistenceGateway backed by SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the gateway.

        Args:
            session_factory: Factory producing AsyncSession objects
            clock: Returns the current aware UTC datetime; used for expiry checks
        """
        self.session_factory = session_factory
        self._clock = clock
        self.logger = logger.bind(service="persistence")

    async def _load_deal(self, session: AsyncSession, deal_id: UUID) -> Optional[Deal]:
        result = await session.execute(
            select(Deal).options(selectinload(Deal.store_locations)).where(Deal.id == deal_id)
        )
        return result.scalar_one_or_none()

    async def create_deal(self, deal: CanonicalDeal) -> Deal:
        """Insert a new active deal row.

        Args:
            deal: Normalized canonical deal

        Returns:
            The persisted Deal with its store locations loaded
        """
        async with self.session_factory() as session:
            row = Deal(
                external_id=deal.external_id,
                store_id=deal.store_id,
                store_chain=deal.store_chain.value,
                title=deal.title,
                description=deal.description,
                original_price=deal.original_price,
                sale_price=deal.sale_price,
                discount_percentage=deal.discount_percentage,
                deal_type=deal.deal_type.value,
                valid_from=deal.valid_from,
                valid_until=deal.valid_until,
                category=deal.category,
                item_ids=list(deal.item_ids),
                restrictions=deal.restrictions,
                image_url=deal.image_url,
                is_active=True,
                scraped_at=deal.scraped_at,
                source_url=deal.source_url,
            )
            session.add(row)
            await session.commit()

            created = await self._load_deal(session, row.id)
            self.logger.debug("deal_created", deal_id=str(row.id), title=deal.title)
            return created

    async def update_deal(self, deal_id: UUID, fields: Dict[str, Any]) -> Optional[Deal]:
        """Update an active deal in place.

        Unknown keys are ignored. None clears a nullable column and is
        skipped for required ones.

        Returns:
            The updated Deal, or None if no active deal has this id
        """
        values = {
            k: v
            for k, v in fields.items()
            if k in UPDATABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
        }

        async with self.session_factory() as session:
            deal = await self._load_deal(session, deal_id)
            if deal is None or not deal.is_active:
                return None

            for key, value in values.items():
                setattr(deal, key, value)
            await session.commit()

            return await self._load_deal(session, deal_id)

    async def find_stores_by_chain(self, chain: StoreChain) -> List[StoreLocation]:
        """Active store locations of a chain, ordered by name."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(StoreLocation)
                .where(
                    StoreLocation.store_chain == StoreChain(chain).value,
                    StoreLocation.is_active == True,
                )
                .order_by(StoreLocation.name)
            )
            return list(result.scalars().all())

    async def find_expired_deals(self) -> List[Deal]:
        """Active deals whose validity ended before now, latest expiry first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Deal)
                .where(
                    Deal.is_active == True,
                    Deal.valid_until < self._clock(),
                )
                .order_by(Deal.valid_until.desc())
            )
            return list(result.scalars().all())

    async def delete_deal(self, deal_id: UUID) -> bool:
        """Soft-delete a deal.

        Returns:
            True if an active deal was deactivated
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Deal)
                .where(Deal.id == deal_id, Deal.is_active == True)
                .values(is_active=False, updated_at=func.now())
            )
            await session.commit()
            return result.rowcount > 0

    async def associate_deal_with_stores(
        self, deal_id: UUID, store_location_ids: Sequence[UUID]
    ) -> None:
        """Replace the deal's store associations with the given locations."""
        async with self.session_factory() as session:
            await session.execute(
                delete(deal_store_locations).where(deal_store_locations.c.deal_id == deal_id)
            )
            unique_ids = list(dict.fromkeys(store_location_ids))
            if unique_ids:
                await session.execute(
                    insert(deal_store_locations),
                    [{"deal_id": deal_id, "store_location_id": sid} for sid in unique_ids],
                )
            await session.commit()

    async def find_matching_deal(self, deal: CanonicalDeal) -> Optional[Deal]:
        """Find the persisted active deal this canonical deal refers to.

        Sources that assign ids are matched on external_id. Otherwise a deal
        matches on chain, case-insensitive title, category and deal type.
        """
        if deal.external_id:
            condition = Deal.external_id == deal.external_id
        else:
            condition = and_(
                Deal.store_chain == deal.store_chain.value,
                func.lower(Deal.title) == deal.title.lower(),
                Deal.category == deal.category,
                Deal.deal_type == deal.deal_type.value,
            )

        async with self.session_factory() as session:
            result = await session.execute(
                select(Deal)
                .where(Deal.is_active == True, condition)
                .order_by(Deal.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_deals_near(
        self,
        latitude: float,
        longitude: float,
        radius_miles: float,
        limit: int = 100,
    ) -> List[Deal]:
        """Active, unexpired deals offered at a store within the radius.

        A bounding box narrows the query; exact distances are then checked
        with haversine. Results are ordered by nearest store, then by
        largest discount.
        """
        min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_miles)

        nearby_deal_ids = (
            select(deal_store_locations.c.deal_id)
            .join(StoreLocation, StoreLocation.id == deal_store_locations.c.store_location_id)
            .where(
                StoreLocation.is_active == True,
                StoreLocation.latitude.between(min_lat, max_lat),
                StoreLocation.longitude.between(min_lon, max_lon),
            )
        )

        async with self.session_factory() as session:
            result = await session.execute(
                select(Deal)
                .options(selectinload(Deal.store_locations))
                .where(
                    Deal.is_active == True,
                    Deal.valid_until > self._clock(),
                    Deal.id.in_(nearby_deal_ids),
                )
            )
            candidates = result.scalars().all()

        ranked = []
        for deal in candidates:
            distances = [
                haversine_miles(latitude, longitude, loc.latitude, loc.longitude)
                for loc in deal.store_locations
                if loc.is_active
            ]
            if distances and min(distances) <= radius_miles:
                ranked.append((min(distances), -deal.discount_percentage, deal))

        ranked.sort(key=lambda entry: (entry[0], entry[1]))
        self.logger.debug(
            "deals_near_found",
            latitude=latitude,
            longitude=longitude,
            radius_miles=radius_miles,
            count=len(ranked),
        )
        return [deal for _, _, deal in ranked[:limit]]
