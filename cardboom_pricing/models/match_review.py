"""
Match Review Queue Model

Ambiguous matches (confidence in the review band) waiting for a human.
Status transitions happen in the admin tooling, outside this engine.
"""
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String,
    Text, UniqueConstraint,
)

from cardboom_pricing.core.database import Base, JSONType
from cardboom_pricing.core.utils import utcnow


class MatchReviewQueue(Base):
    """Pending matches for human review."""

    __tablename__ = "match_review_queue"

    id = Column(Integer, primary_key=True, index=True)

    # Source record
    source = Column(String(50), nullable=False)
    source_event_id = Column(String(255), nullable=False)
    external_data = Column(JSONType)  # Snapshot of the observation for display

    # Match candidate
    proposed_market_item_id = Column(String(36), ForeignKey("market_items.id"), nullable=False)
    proposed_confidence = Column(Numeric(4, 2), nullable=False)
    reason = Column(Text)

    # Queue status
    status = Column(String(20), nullable=False, default="pending")

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_review_status"),
        UniqueConstraint(
            "source", "source_event_id", "proposed_market_item_id", name="uq_review_candidate"
        ),
    )
