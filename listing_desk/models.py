"""SQLAlchemy models for listing tables.

Key Concepts:
- ListingTable: a named table owned by one account. ``version`` is bumped on
  every write and doubles as the row lock that serializes concurrent commits.
- Listing: one property in a table. ``position`` orders the table; new
  listings get positions below the current head, so prepending never rewrites
  existing rows.
- SharedList: an immutable JSON snapshot published through a share link.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ListingTable(Base):
    """A listing table (tabela de exclusividades)."""

    __tablename__ = "listing_tables"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    listings: Mapped[list["Listing"]] = relationship(
        "Listing",
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="Listing.position",
    )

    def __repr__(self) -> str:
        return f"<ListingTable {self.id}: {self.name}>"


class Listing(Base):
    """A property listing inside a table."""

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listing_tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    broker_name: Mapped[str] = mapped_column(Text, nullable=False)
    agency_name: Mapped[str | None] = mapped_column(Text)
    property_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_number: Mapped[str] = mapped_column(String(40), default="")

    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False)
    bathrooms: Mapped[int] = mapped_column(Integer, nullable=False)
    suites: Mapped[int] = mapped_column(Integer, nullable=False)
    lavabos: Mapped[int] = mapped_column(Integer, default=0)

    area_sqm: Mapped[float] = mapped_column(Float, nullable=False)
    total_area_sqm: Mapped[float | None] = mapped_column(Float)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    payment_terms: Mapped[str] = mapped_column(Text, nullable=False)
    additional_features: Mapped[str] = mapped_column(Text, default="")

    property_type: Mapped[str] = mapped_column(String(20), nullable=False)  # PropertyType value
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # PropertyStatus value
    categories: Mapped[list[str]] = mapped_column(JSON, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    address: Mapped[str | None] = mapped_column(Text)
    neighborhood: Mapped[str | None] = mapped_column(String(120), index=True)
    broker_contact: Mapped[str | None] = mapped_column(Text)
    photo_link: Mapped[str | None] = mapped_column(Text)
    extra_material_link: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    table: Mapped["ListingTable"] = relationship("ListingTable", back_populates="listings")

    def __repr__(self) -> str:
        return f"<Listing {self.id}: {self.property_name} {self.unit_number}>"


class SharedList(Base):
    """A snapshot of records published through a share link."""

    __tablename__ = "shared_lists"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    records: Mapped[list[dict]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<SharedList {self.id}: {len(self.records)} records>"
