"""
Price History Model

Append-only trail of accepted catalog price changes. A row is written in the
same transaction as the accepted update and never modified afterwards.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from cardboom_pricing.core.database import Base
from cardboom_pricing.core.utils import utcnow


class PriceHistory(Base):
    """Accepted price change for a market item."""
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    market_item_id = Column(String(36), ForeignKey("market_items.id"), nullable=False)

    price = Column(Numeric(12, 2), nullable=False)
    previous_price = Column(Numeric(12, 2))
    change_pct = Column(Numeric(8, 2))

    source = Column(String(50), nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_price_history_item_recorded", "market_item_id", "recorded_at"),
    )
