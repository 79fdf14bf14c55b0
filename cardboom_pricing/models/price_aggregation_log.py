"""
Price Aggregation Log Model

One row per item per daily aggregation run, written whether or not the
catalog price changed. Re-running on the same day overwrites the row.
"""
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String,
    UniqueConstraint,
)

from cardboom_pricing.core.database import Base
from cardboom_pricing.core.utils import utcnow


class PriceAggregationLog(Base):
    """Outcome of blending one item's recent events on a given day."""
    __tablename__ = "price_aggregation_log"

    id = Column(Integer, primary_key=True)
    market_item_id = Column(String(36), ForeignKey("market_items.id"), nullable=False)
    run_date = Column(Date, nullable=False)

    previous_price = Column(Numeric(12, 2))
    new_price = Column(Numeric(12, 2))
    price_change_pct = Column(Numeric(8, 2))
    blended_price = Column(Numeric(12, 2))
    cardmarket_ref = Column(Numeric(12, 2))
    ebay_median = Column(Numeric(12, 2))
    sample_count = Column(Integer, nullable=False, default=0)

    was_updated = Column(Boolean, nullable=False, default=False)
    skip_reason = Column(String(100))  # insufficient_data | no_valid_prices | validator_rejected

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("market_item_id", "run_date", name="uq_price_aggregation_item_day"),
    )

    def __repr__(self) -> str:
        return f"<PriceAggregationLog {self.market_item_id} {self.run_date} updated={self.was_updated}>"
