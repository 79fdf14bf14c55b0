"""
Price ingestion request / response schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ManualObservation(BaseModel):
    """A price observation entered by hand for one catalog item."""
    model_config = ConfigDict(populate_by_name=True)

    source_event_id: Optional[str] = Field(None, alias="sourceEventId", max_length=255)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    price: Decimal = Field(..., gt=0)
    currency: Literal["USD", "EUR"] = "USD"
    card_number: Optional[str] = Field(None, alias="cardNumber", max_length=50)
    sold_at: Optional[datetime] = Field(None, alias="soldAt")
    url: Optional[str] = None


class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: Literal["ebay", "cardmarket", "pricecharting", "manual"]
    category: Optional[str] = Field(None, max_length=50)
    limit: int = Field(100, ge=1, le=1000)
    market_item_ids: Optional[List[str]] = Field(None, alias="marketItemIds")
    # market item id -> observations; manual source only
    observations: Optional[Dict[str, List[ManualObservation]]] = None

    @model_validator(mode="after")
    def observations_only_for_manual(self):
        if self.observations and self.source != "manual":
            raise ValueError("observations are only accepted for source 'manual'")
        return self


class IngestResponse(BaseModel):
    success: bool = True
    source: str
    items_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    items_matched: int = 0
    queued_for_review: int = 0
    prices_updated: int = 0
    prices_rejected: int = 0
    outliers: int = 0
    errors: List[str] = Field(default_factory=list)
    adapter_stats: List[Dict[str, Any]] = Field(default_factory=list)
