"""
Match Review Service

Handles:
- Confidence-band check for review routing
- Queue insertion with de-duplication per (source, event, proposed item)
- Admin read helpers (listing, counts by status)

Status transitions (approve/reject) belong to the admin tooling.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardboom_pricing.core.config import PricingRules
from cardboom_pricing.models.match_review import MatchReviewQueue
from cardboom_pricing.schemas.match_review import MatchQueueFilter, MatchQueueStats

logger = logging.getLogger(__name__)


def review_reason(confidence: float) -> str:
    """'Confidence 82% - needs manual verification'"""
    pct = (Decimal(str(confidence)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"Confidence {pct}% - needs manual verification"


class MatchReviewService:
    """Service for match review queue operations."""

    def __init__(self, db: AsyncSession, rules: Optional[PricingRules] = None):
        self.db = db
        self.rules = rules or PricingRules()

    def in_review_band(self, confidence: float) -> bool:
        return self.rules.review_threshold <= confidence < self.rules.auto_apply_threshold

    # =========================================================
    # Queue Operations
    # =========================================================

    async def _find_existing(
        self, source: str, source_event_id: str, market_item_id: str
    ) -> Optional[MatchReviewQueue]:
        result = await self.db.execute(
            select(MatchReviewQueue).where(
                and_(
                    MatchReviewQueue.source == source,
                    MatchReviewQueue.source_event_id == source_event_id,
                    MatchReviewQueue.proposed_market_item_id == market_item_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def add_to_queue(
        self,
        source: str,
        source_event_id: str,
        market_item_id: str,
        confidence: float,
        external_data: Dict[str, Any],
    ) -> Tuple[MatchReviewQueue, bool]:
        """
        Add an ambiguous match to the review queue.

        Returns (entry, created); created is False when the event was already queued.

        Raises:
            ValueError: confidence is outside the review band [0.70, 0.90).
        """
        if not self.in_review_band(confidence):
            raise ValueError(
                f"Confidence {confidence} outside review band "
                f"[{self.rules.review_threshold}, {self.rules.auto_apply_threshold})"
            )

        existing = await self._find_existing(source, source_event_id, market_item_id)
        if existing:
            logger.debug(f"[REVIEW_QUEUE] Already queued: {source}:{source_event_id} -> {market_item_id}")
            return existing, False

        queue_item = MatchReviewQueue(
            source=source,
            source_event_id=source_event_id,
            external_data=external_data,
            proposed_market_item_id=market_item_id,
            proposed_confidence=Decimal(str(confidence)),
            reason=review_reason(confidence),
            status="pending",
        )
        self.db.add(queue_item)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent ingestion of the same event
            await self.db.rollback()
            existing = await self._find_existing(source, source_event_id, market_item_id)
            if existing is None:
                raise
            return existing, False

        await self.db.refresh(queue_item)
        logger.info(
            f"[REVIEW_QUEUE] Queued {source}:{source_event_id} -> {market_item_id} ({queue_item.reason})"
        )
        return queue_item, True

    async def get_queue(self, filter: MatchQueueFilter) -> Tuple[List[MatchReviewQueue], int]:
        """Get paginated queue entries, oldest first."""
        query = select(MatchReviewQueue)

        if filter.status != "all":
            query = query.where(MatchReviewQueue.status == filter.status)
        if filter.source:
            query = query.where(MatchReviewQueue.source == filter.source)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(MatchReviewQueue.created_at.asc(), MatchReviewQueue.id.asc())
        query = query.offset(filter.offset).limit(filter.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_stats(self) -> MatchQueueStats:
        """Get queue statistics."""
        result = await self.db.execute(
            select(MatchReviewQueue.status, func.count()).group_by(MatchReviewQueue.status)
        )
        by_status = {status: count for status, count in result.all()}

        result = await self.db.execute(
            select(MatchReviewQueue.source, func.count())
            .where(MatchReviewQueue.status == "pending")
            .group_by(MatchReviewQueue.source)
        )
        by_source = {source: count for source, count in result.all()}

        return MatchQueueStats(
            pending_count=by_status.get("pending", 0),
            approved_count=by_status.get("approved", 0),
            rejected_count=by_status.get("rejected", 0),
            by_source=by_source,
        )
