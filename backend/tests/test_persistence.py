"""Tests for the SQLAlchemy persistence gateway on in-memory SQLite."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from grocery_deals.models import Deal, DealType, StoreChain, deal_store_locations
from grocery_deals.services.geo import haversine_miles

from conftest import ATLANTA, NOW, make_deal


class TestDealLifecycle:

    async def test_create_deal(self, gateway):
        created = await gateway.create_deal(make_deal(external_id="kroger-coupon-1"))

        assert created.id is not None
        assert created.is_active is True
        assert created.store_chain == "kroger"
        assert created.deal_type == "discount"
        assert created.sale_price == Decimal("3.49")
        assert created.item_ids == ["0001111041700"]
        assert created.store_locations == []

    async def test_update_deal(self, gateway):
        created = await gateway.create_deal(make_deal())

        updated = await gateway.update_deal(
            created.id,
            {"sale_price": Decimal("2.99"), "title": "Whole Milk", "not_a_column": "ignored"},
        )

        assert updated.sale_price == Decimal("2.99")
        assert updated.title == "Whole Milk"

    async def test_update_clears_nullable_fields_but_not_required_ones(self, gateway):
        created = await gateway.create_deal(
            make_deal(restrictions="Minimum purchase: $5.00", image_url="https://img.kroger.test/milk.jpg")
        )

        updated = await gateway.update_deal(
            created.id, {"restrictions": None, "image_url": None, "title": None}
        )

        assert updated.restrictions is None
        assert updated.image_url is None
        assert updated.title == "Whole Milk 1 Gallon"

    async def test_update_missing_deal_returns_none(self, gateway):
        assert await gateway.update_deal(uuid4(), {"title": "x"}) is None

    async def test_delete_is_soft(self, gateway, session_factory):
        created = await gateway.create_deal(make_deal())

        assert await gateway.delete_deal(created.id) is True
        assert await gateway.delete_deal(created.id) is False

        async with session_factory() as session:
            row = await session.get(Deal, created.id)
            assert row is not None
            assert row.is_active is False

    async def test_updating_inactive_deal_returns_none(self, gateway):
        created = await gateway.create_deal(make_deal())
        await gateway.delete_deal(created.id)

        assert await gateway.update_deal(created.id, {"title": "Revived"}) is None


class TestStores:

    async def test_find_stores_by_chain_returns_active_only(self, gateway, kroger_stores, publix_stores):
        stores = await gateway.find_stores_by_chain(StoreChain.KROGER)

        assert [s.name for s in stores] == ["Kroger Midtown", "Kroger Ponce de Leon"]

    async def test_associate_replaces_previous_links(self, gateway, session_factory, kroger_stores):
        created = await gateway.create_deal(make_deal())
        first, second = kroger_stores[0], kroger_stores[1]

        await gateway.associate_deal_with_stores(created.id, [first.id, second.id])
        await gateway.associate_deal_with_stores(created.id, [second.id, second.id])

        async with session_factory() as session:
            rows = (
                await session.execute(
                    select(deal_store_locations.c.store_location_id).where(
                        deal_store_locations.c.deal_id == created.id
                    )
                )
            ).scalars().all()
        assert rows == [second.id]


class TestExpiry:

    async def test_find_expired_deals(self, gateway):
        expired = await gateway.create_deal(
            make_deal(title="Old", valid_from=NOW - timedelta(days=10), valid_until=NOW - timedelta(days=1))
        )
        await gateway.create_deal(make_deal(title="Current"))
        already_removed = await gateway.create_deal(
            make_deal(title="Gone", valid_from=NOW - timedelta(days=10), valid_until=NOW - timedelta(days=2))
        )
        await gateway.delete_deal(already_removed.id)

        found = await gateway.find_expired_deals()

        assert [d.id for d in found] == [expired.id]


class TestMatching:

    async def test_matches_on_external_id(self, gateway):
        created = await gateway.create_deal(make_deal(external_id="kroger-coupon-9"))

        match = await gateway.find_matching_deal(
            make_deal(external_id="kroger-coupon-9", title="Renamed coupon")
        )

        assert match.id == created.id
        assert await gateway.find_matching_deal(make_deal(external_id="kroger-coupon-10")) is None

    async def test_matches_on_content_case_insensitively(self, gateway):
        created = await gateway.create_deal(
            make_deal(store_chain=StoreChain.PUBLIX, title="Publix Bakery Bread", category="Bakery",
                      deal_type=DealType.BOGO)
        )

        match = await gateway.find_matching_deal(
            make_deal(store_chain=StoreChain.PUBLIX, title="PUBLIX BAKERY BREAD", category="Bakery",
                      deal_type=DealType.BOGO)
        )
        assert match.id == created.id

        other_type = await gateway.find_matching_deal(
            make_deal(store_chain=StoreChain.PUBLIX, title="Publix Bakery Bread", category="Bakery",
                      deal_type=DealType.DISCOUNT)
        )
        assert other_type is None

        other_chain = await gateway.find_matching_deal(
            make_deal(title="Publix Bakery Bread", category="Bakery", deal_type=DealType.BOGO)
        )
        assert other_chain is None

    async def test_inactive_deals_never_match(self, gateway):
        created = await gateway.create_deal(make_deal(external_id="kroger-coupon-5"))
        await gateway.delete_deal(created.id)

        assert await gateway.find_matching_deal(make_deal(external_id="kroger-coupon-5")) is None


class TestFindDealsNear:

    async def test_returns_deals_at_stores_within_radius(self, gateway, kroger_stores, publix_stores):
        ponce, midtown, closed = kroger_stores
        near = await gateway.create_deal(make_deal(title="Milk"))
        await gateway.associate_deal_with_stores(near.id, [ponce.id])
        far = await gateway.create_deal(make_deal(title="Eggs"))
        await gateway.associate_deal_with_stores(far.id, [midtown.id])
        unlinked = await gateway.create_deal(make_deal(title="Bread"))

        radius = haversine_miles(*ATLANTA, ponce.latitude, ponce.longitude) + 0.1
        assert haversine_miles(*ATLANTA, midtown.latitude, midtown.longitude) > radius

        deals = await gateway.find_deals_near(*ATLANTA, radius_miles=radius)

        assert [d.title for d in deals] == ["Milk"]
        assert deals[0].store_locations[0].name == "Kroger Ponce de Leon"
        assert unlinked.id not in {d.id for d in deals}

    async def test_excludes_inactive_stores_and_expired_deals(self, gateway, kroger_stores):
        ponce, _, closed = kroger_stores
        at_closed_store = await gateway.create_deal(make_deal(title="Closed store deal"))
        await gateway.associate_deal_with_stores(at_closed_store.id, [closed.id])
        expired = await gateway.create_deal(
            make_deal(title="Expired", valid_from=NOW - timedelta(days=9), valid_until=NOW - timedelta(days=1))
        )
        await gateway.associate_deal_with_stores(expired.id, [ponce.id])

        assert await gateway.find_deals_near(*ATLANTA, radius_miles=25) == []

    async def test_orders_by_distance_and_respects_limit(self, gateway, kroger_stores):
        ponce, midtown, _ = kroger_stores
        for title, store in (("Far deal", midtown), ("Near deal", ponce)):
            deal = await gateway.create_deal(make_deal(title=title))
            await gateway.associate_deal_with_stores(deal.id, [store.id])

        deals = await gateway.find_deals_near(*ATLANTA, radius_miles=25)
        assert [d.title for d in deals] == ["Near deal", "Far deal"]

        limited = await gateway.find_deals_near(*ATLANTA, radius_miles=25, limit=1)
        assert [d.title for d in limited] == ["Near deal"]
