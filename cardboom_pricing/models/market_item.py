"""
Market Item Models

The catalog maintained by the pricing engine. Rows are seeded externally; the
engine mutates prices (through PriceValidator), the cached canonical key, the
Cardmarket identity (cardmarket_id / cardmarket_trend) and the scheduler's
staleness stamp. Items are never deleted here.

MarketItemGrade holds the per condition tier snapshot (raw, PSA, BGS, CGC).
Listing mirrors the marketplace's listings table, read only.
"""
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from cardboom_pricing.core.database import Base
from cardboom_pricing.core.utils import utcnow

GRADE_TIERS = ("raw", "psa7", "psa8", "psa9", "psa10", "bgs10", "cgc10")


def _new_id() -> str:
    return str(uuid4())


class MarketItem(Base):
    """A single catalog card (or figure) with its verified price."""
    __tablename__ = "market_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(500), nullable=False)
    category = Column(String(50), nullable=False, index=True)

    # Identity fields, each game uses a subset
    set_code = Column(String(50))
    set_name = Column(String(255))
    card_number = Column(String(50))
    collector_number = Column(String(50))
    card_code = Column(String(50))
    variant = Column(String(50))
    language = Column(String(20))

    external_canonical_key = Column(String(255), index=True)
    external_id = Column(String(100))  # 'pc:12345' for PriceCharting products
    cardmarket_id = Column(String(50))

    # Pricing
    current_price = Column(Numeric(12, 2))
    price_24h_ago = Column(Numeric(12, 2))
    change_24h = Column(Numeric(8, 2))
    verified_price = Column(Numeric(12, 2))
    verified_source = Column(String(50))
    verified_at = Column(DateTime(timezone=True))
    data_source = Column(String(50))
    match_source = Column(String(50))
    match_confidence = Column(Numeric(4, 2))
    cardmarket_trend = Column(Numeric(12, 2))

    # Popularity signals used for scheduling priority
    is_trending = Column(Boolean, default=False, nullable=False)
    views_24h = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True))

    grades = relationship("MarketItemGrade", back_populates="market_item", lazy="noload")

    __table_args__ = (
        Index("ix_market_items_updated_at", "updated_at"),
        Index("ix_market_items_category_id", "category", "id"),
    )

    def __repr__(self) -> str:
        return f"<MarketItem {self.id} {self.category}:{self.name!r} ${self.current_price}>"


class MarketItemGrade(Base):
    """Price snapshot for one condition tier of an item."""
    __tablename__ = "market_item_grades"

    id = Column(Integer, primary_key=True)
    market_item_id = Column(String(36), ForeignKey("market_items.id"), nullable=False)
    grade = Column(String(20), nullable=False)  # one of GRADE_TIERS
    price = Column(Numeric(12, 2), nullable=False)
    source = Column(String(50))
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    market_item = relationship("MarketItem", back_populates="grades")

    __table_args__ = (
        UniqueConstraint("market_item_id", "grade", name="uq_market_item_grade"),
    )


class Listing(Base):
    """Marketplace listing; only `status` and the item reference are read."""
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True)
    market_item_id = Column(String(36), ForeignKey("market_items.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=utcnow)
