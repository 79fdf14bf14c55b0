"""
Daily Price Aggregation

Blends the recent non-outlier PriceEvents of every matched item into a
reference price and routes it through PriceValidator:

1. Last 30 days of events for items with a canonical key (outliers never read)
2. MAD filter per source (multiplier 4, only with >= 5 samples)
3. Cardmarket reference = median of Cardmarket prices
   eBay reference       = median of eBay sales, only with >= 3 sales
4. Both present -> 60% Cardmarket + 40% eBay; otherwise whichever exists
5. PriceValidator decides whether the catalog changes
6. On acceptance the consumed events are marked is_processed

Every item gets one PriceAggregationLog row per run date (previous / new /
blended price, references, sample count, skip reason); cardmarket_trend
follows the latest Cardmarket reference. Items with no usable samples are
counted as insufficient_data.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from statistics import median
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardboom_pricing.core.config import PricingRules
from cardboom_pricing.core.database import AsyncSessionLocal
from cardboom_pricing.core.exceptions import PricingBaseError
from cardboom_pricing.core.utils import quantize_money, utcnow
from cardboom_pricing.models.market_item import MarketItem
from cardboom_pricing.models.price_aggregation_log import PriceAggregationLog
from cardboom_pricing.models.price_event import PriceEvent
from cardboom_pricing.services.outlier_detection import filter_mad_outliers
from cardboom_pricing.services.price_validator import PriceValidator

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
CARDMARKET_WEIGHT = Decimal("0.6")
EBAY_WEIGHT = Decimal("0.4")
MAD_MULTIPLIER = Decimal("4")
MAD_MIN_SAMPLES = 5


@dataclass
class BlendedPrice:
    price: Optional[Decimal]
    cardmarket_ref: Optional[Decimal]
    ebay_median: Optional[Decimal]
    sample_count: int


def blend_prices(
    cardmarket_prices: List[Decimal],
    ebay_prices: List[Decimal],
    min_ebay_samples: int = 3,
) -> BlendedPrice:
    """Pure blending step, exposed for reuse and testing."""
    cm = filter_mad_outliers(cardmarket_prices, MAD_MULTIPLIER, MAD_MIN_SAMPLES)
    eb = filter_mad_outliers(ebay_prices, MAD_MULTIPLIER, MAD_MIN_SAMPLES)

    cardmarket_ref = median(cm) if cm else None
    ebay_median = median(eb) if len(eb) >= min_ebay_samples else None

    if cardmarket_ref is not None and ebay_median is not None:
        price = cardmarket_ref * CARDMARKET_WEIGHT + ebay_median * EBAY_WEIGHT
    elif cardmarket_ref is not None:
        price = cardmarket_ref
    else:
        price = ebay_median

    return BlendedPrice(
        price=quantize_money(price) if price is not None else None,
        cardmarket_ref=cardmarket_ref,
        ebay_median=ebay_median,
        sample_count=len(cm) + len(eb),
    )


@dataclass
class RecentEvents:
    cardmarket: List[Decimal] = field(default_factory=list)
    ebay: List[Decimal] = field(default_factory=list)
    event_ids: List[int] = field(default_factory=list)
    total: int = 0


class PriceAggregator:
    def __init__(
        self,
        rules: Optional[PricingRules] = None,
        session_factory: async_sessionmaker = AsyncSessionLocal,
    ):
        self.rules = rules or PricingRules()
        self.session_factory = session_factory
        self.validator = PriceValidator(self.rules)

    async def _select_item_ids(self, category: Optional[str], limit: int) -> List[str]:
        query = select(MarketItem.id).where(MarketItem.external_canonical_key.is_not(None))
        if category:
            query = query.where(func.lower(MarketItem.category) == category.lower())
        query = query.order_by(MarketItem.id).limit(limit)
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def _recent_events(self, db: AsyncSession, item_id: str) -> RecentEvents:
        since = utcnow() - timedelta(days=WINDOW_DAYS)
        result = await db.execute(
            select(PriceEvent.id, PriceEvent.source, PriceEvent.event_type, PriceEvent.total_usd).where(
                and_(
                    PriceEvent.matched_market_item_id == item_id,
                    PriceEvent.is_outlier == False,  # noqa: E712
                    PriceEvent.ingested_at >= since,
                )
            )
        )
        recent = RecentEvents()
        for event_id, source, event_type, total_usd in result.all():
            recent.total += 1
            if total_usd is None or total_usd <= 0:
                continue
            if source == "cardmarket":
                recent.cardmarket.append(total_usd)
            elif source == "ebay" and event_type == "sale":
                recent.ebay.append(total_usd)
            else:
                continue
            recent.event_ids.append(event_id)
        return recent

    async def _write_log(self, db: AsyncSession, item_id: str, **values) -> None:
        """Upsert today's log row for the item."""
        run_date = utcnow().date()
        result = await db.execute(
            select(PriceAggregationLog).where(
                and_(
                    PriceAggregationLog.market_item_id == item_id,
                    PriceAggregationLog.run_date == run_date,
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PriceAggregationLog(market_item_id=item_id, run_date=run_date)
            db.add(row)
        for column in (
            "previous_price", "new_price", "price_change_pct", "blended_price",
            "cardmarket_ref", "ebay_median",
        ):
            setattr(row, column, values.get(column))
        row.sample_count = values.get("sample_count", 0)
        row.was_updated = values.get("was_updated", False)
        row.skip_reason = values.get("skip_reason")

    async def _mark_processed(self, db: AsyncSession, event_ids: List[int]) -> None:
        if event_ids:
            await db.execute(
                update(PriceEvent).where(PriceEvent.id.in_(event_ids)).values(is_processed=True)
            )

    async def _aggregate_item(self, db: AsyncSession, item: MarketItem, stats: Dict[str, Any]) -> None:
        previous_price = item.current_price
        recent = await self._recent_events(db, item.id)

        if recent.total == 0:
            stats["insufficient_data"] += 1
            await self._write_log(db, item.id, previous_price=previous_price, skip_reason="insufficient_data")
            await db.commit()
            return

        blended = blend_prices(recent.cardmarket, recent.ebay, self.rules.min_auction_samples)
        if blended.price is None:
            stats["insufficient_data"] += 1
            await self._write_log(
                db, item.id,
                previous_price=previous_price,
                sample_count=recent.total,
                skip_reason="no_valid_prices",
            )
            await db.commit()
            return

        if blended.cardmarket_ref is not None and blended.ebay_median is not None:
            source = "aggregate"
        elif blended.cardmarket_ref is not None:
            source = "cardmarket"
        else:
            source = "ebay"
        outcome = await self.validator.validate_and_apply(db, item, blended.price, source=source)

        # The validator has committed (or left untouched) the price; the audit row follows
        if blended.cardmarket_ref is not None:
            item.cardmarket_trend = quantize_money(blended.cardmarket_ref)
        if outcome.accepted:
            stats["updated"] += 1
            await self._mark_processed(db, recent.event_ids)
        else:
            stats["rejected"] += 1

        await self._write_log(
            db, item.id,
            previous_price=previous_price,
            new_price=outcome.new_price if outcome.accepted else None,
            price_change_pct=outcome.change_pct,
            blended_price=blended.price,
            cardmarket_ref=quantize_money(blended.cardmarket_ref) if blended.cardmarket_ref is not None else None,
            ebay_median=quantize_money(blended.ebay_median) if blended.ebay_median is not None else None,
            sample_count=recent.total,
            was_updated=outcome.accepted,
            skip_reason=None if outcome.accepted else "validator_rejected",
        )
        await db.commit()

    async def run(self, category: Optional[str] = None, limit: int = 500) -> Dict[str, Any]:
        stats = {
            "success": True,
            "processed": 0,
            "updated": 0,
            "rejected": 0,
            "insufficient_data": 0,
            "errors": [],
        }

        item_ids = await self._select_item_ids(category, limit)
        logger.info(f"[AGGREGATE] Processing {len(item_ids)} matched items")

        for item_id in item_ids:
            async with self.session_factory() as db:
                try:
                    item = await db.get(MarketItem, item_id)
                    if item is None:
                        continue
                    stats["processed"] += 1
                    await self._aggregate_item(db, item, stats)
                except PricingBaseError as e:
                    await db.rollback()
                    stats["errors"].append(f"{item_id}: {e.message}")
                except Exception as e:
                    await db.rollback()
                    logger.exception(f"[AGGREGATE] Error processing {item_id}")
                    stats["errors"].append(f"{item_id}: {e}")

        logger.info(
            f"[AGGREGATE] Completed - processed: {stats['processed']}, updated: {stats['updated']}, "
            f"rejected: {stats['rejected']}, insufficient: {stats['insufficient_data']}"
        )
        return stats
