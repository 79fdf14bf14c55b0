"""
Daily price aggregation trigger

POST /api/pricing/aggregate
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardboom_pricing.api.deps import get_session_factory, get_settings
from cardboom_pricing.core.config import PricingRules, Settings
from cardboom_pricing.services.price_aggregation import PriceAggregator

router = APIRouter()


class AggregateRequest(BaseModel):
    category: Optional[str] = Field(None, max_length=50)
    limit: int = Field(500, ge=1, le=5000)


@router.post("/aggregate")
async def aggregate_prices(
    request: AggregateRequest,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> Dict[str, Any]:
    aggregator = PriceAggregator(PricingRules.from_settings(settings), session_factory)
    return await aggregator.run(category=request.category, limit=request.limit)
