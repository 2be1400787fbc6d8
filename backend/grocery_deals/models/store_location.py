"""Store location model representing a physical store of a chain."""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Text, Boolean, Float, Index
from sqlalchemy import JSON as JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grocery_deals.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from grocery_deals.models.deal import deal_store_locations

if TYPE_CHECKING:
    from grocery_deals.models.deal import Deal


class StoreLocation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A physical store belonging to a chain (e.g. a Kroger in Atlanta).

    Weekly hours are kept as JSON keyed by weekday:
    ``{"monday": {"open": "07:00", "close": "22:00", "is_closed": false}, ...}``
    """

    __tablename__ = "store_locations"

    store_chain: Mapped[str] = mapped_column(String(20), nullable=False, index=True, comment="'publix' or 'kroger'")
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    hours: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_store_locations_lat_lon", "latitude", "longitude"),
    )

    deals: Mapped[list["Deal"]] = relationship(
        secondary=deal_store_locations,
        back_populates="store_locations",
    )

    def __repr__(self) -> str:
        return f"<StoreLocation(id={self.id}, chain='{self.store_chain}', name='{self.name}')>"
