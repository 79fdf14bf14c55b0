"""
Match Review Queue Schemas

All inputs validated with Pydantic.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================
# Request Schemas
# =============================================================

class MatchQueueFilter(BaseModel):
    """Filter for listing review queue entries."""
    status: Literal["pending", "approved", "rejected", "all"] = "pending"
    source: Optional[str] = Field(None, max_length=50)
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


# =============================================================
# Response Schemas
# =============================================================

class MatchQueueItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    source_event_id: str
    external_data: Optional[Dict[str, Any]] = None
    proposed_market_item_id: str
    proposed_confidence: Decimal
    reason: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class MatchQueueResponse(BaseModel):
    items: List[MatchQueueItem]
    total: int
    limit: int
    offset: int


class MatchQueueStats(BaseModel):
    """Counts by status."""
    pending_count: int
    approved_count: int
    rejected_count: int
    by_source: Dict[str, int] = Field(default_factory=dict)  # pending entries per source
