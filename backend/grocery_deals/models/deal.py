"""Deal model representing a persisted, canonical grocery promotion."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy import JSON as JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grocery_deals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from grocery_deals.models.store_location import StoreLocation


deal_store_locations = Table(
    "deal_store_locations",
    Base.metadata,
    Column("deal_id", ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True),
    Column("store_location_id", ForeignKey("store_locations.id", ondelete="CASCADE"), primary_key=True),
)


class Deal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A deal offered by a store chain, valid for a date window.

    Deals are never hard-deleted. Expiry cleanup flips ``is_active`` off.
    """

    __tablename__ = "deals"

    external_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Source-assigned identifier, e.g. 'kroger-coupon-123'",
    )
    store_id: Mapped[str] = mapped_column(String(100), nullable=False, comment="Chain-level store key")
    store_chain: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Pricing
    original_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    sale_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Discount as percentage (0-100)",
    )
    deal_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="'bogo', 'discount' or 'coupon'")

    # Validity window
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False, default="General")
    item_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    restrictions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance and status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_deals_active_valid_until", "is_active", "valid_until"),
        Index("idx_deals_chain_title", "store_chain", "title"),
    )

    store_locations: Mapped[list["StoreLocation"]] = relationship(
        secondary=deal_store_locations,
        back_populates="deals",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Deal(id={self.id}, title='{self.title[:50]}', sale_price={self.sale_price}, chain='{self.store_chain}')>"
