"""
Price Event Model

One raw pricing observation (a sold listing, a trend price, a product quote)
from an external source. Re-ingesting the same (source, source_event_id)
updates the row in place; events are never deleted.

Outlier events are stored for audit with is_outlier=True and are never used
for catalog prices or aggregation.
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
    Text, UniqueConstraint,
)

from cardboom_pricing.core.database import Base, JSONType
from cardboom_pricing.core.utils import utcnow


class PriceEvent(Base):
    __tablename__ = "price_events"

    id = Column(Integer, primary_key=True)

    source = Column(String(50), nullable=False)  # 'ebay', 'cardmarket', 'pricecharting', 'manual'
    source_event_id = Column(String(255), nullable=False)
    external_url = Column(Text)
    raw_json = Column(JSONType)
    external_canonical_key = Column(String(255))

    # Amounts
    currency = Column(String(3), nullable=False, default="USD")
    total_price = Column(Numeric(12, 2), nullable=False)
    total_usd = Column(Numeric(12, 2))
    total_eur = Column(Numeric(12, 2))
    event_type = Column(String(20), nullable=False, default="sale")  # 'sale' | 'trend'
    sold_at = Column(DateTime(timezone=True))

    # Matching
    matched_market_item_id = Column(String(36), ForeignKey("market_items.id"))
    match_confidence = Column(Numeric(4, 2))

    is_outlier = Column(Boolean, nullable=False, default=False)
    outlier_reason = Column(String(255))
    is_processed = Column(Boolean, nullable=False, default=False)

    ingested_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("source", "source_event_id", name="uq_price_event_source"),
        Index("ix_price_events_item_sold", "matched_market_item_id", "sold_at"),
    )

    def __repr__(self) -> str:
        return f"<PriceEvent {self.source}:{self.source_event_id} {self.total_usd} USD>"
