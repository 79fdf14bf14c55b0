"""
Match review queue (admin read)

GET /api/pricing/review-queue
GET /api/pricing/review-queue/stats
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cardboom_pricing.api.deps import get_db
from cardboom_pricing.schemas.match_review import (
    MatchQueueFilter,
    MatchQueueItem,
    MatchQueueResponse,
    MatchQueueStats,
)
from cardboom_pricing.services.match_review_service import MatchReviewService

router = APIRouter(prefix="/review-queue")


@router.get("", response_model=MatchQueueResponse)
async def get_review_queue(
    status: Literal["pending", "approved", "rejected", "all"] = "pending",
    source: Optional[str] = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List review entries, oldest first."""
    filter = MatchQueueFilter(status=status, source=source, limit=limit, offset=offset)
    items, total = await MatchReviewService(db).get_queue(filter)
    return MatchQueueResponse(
        items=[MatchQueueItem.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=MatchQueueStats)
async def get_review_queue_stats(db: AsyncSession = Depends(get_db)):
    return await MatchReviewService(db).get_stats()
