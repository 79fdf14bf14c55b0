"""
Price Validator v1.0.0

Anti-manipulation gate in front of every catalog price change.

Rules:
- Non-positive candidates are always rejected.
- Cold start (no current price, or 0) accepts any positive candidate.
- Otherwise accept iff current * min_ratio <= candidate <= current * max_ratio
  (Decimal arithmetic, inclusive bounds, 0.2x-5x by default).

A rejection is a result value, not an exception: it is logged as suspicious,
counted by the caller and leaves the catalog untouched.

On acceptance, in one commit:
- price_24h_ago <- prior price, change_24h <- percentage (None on cold start)
- current_price / verified_price / verified_source / verified_at / data_source / updated_at
- one PriceHistory row
- MarketItemGrade upserts for games that track condition tiers
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardboom_pricing.core.config import PricingRules
from cardboom_pricing.core.exceptions import PersistenceError
from cardboom_pricing.core.utils import quantize_money, to_decimal, utcnow
from cardboom_pricing.models.market_item import GRADE_TIERS, MarketItem, MarketItemGrade
from cardboom_pricing.models.price_history import PriceHistory

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    """Result of validating one candidate price."""
    accepted: bool
    new_price: Optional[Decimal]
    previous_price: Optional[Decimal] = None
    change_pct: Optional[Decimal] = None
    reason: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return not self.accepted


class PriceValidator:
    """Validates candidate prices and persists accepted ones."""

    def __init__(self, rules: Optional[PricingRules] = None):
        self.rules = rules or PricingRules()

    def check(self, current_price, new_price) -> ValidationOutcome:
        """Pure bounds check, no database access."""
        candidate = to_decimal(new_price)
        current = to_decimal(current_price)

        if candidate is None or candidate <= 0:
            return ValidationOutcome(
                accepted=False,
                new_price=candidate,
                previous_price=current,
                reason="non_positive_price",
            )

        if current is None or current == 0:
            return ValidationOutcome(accepted=True, new_price=candidate, previous_price=current)

        lower = current * self.rules.min_price_ratio
        upper = current * self.rules.max_price_ratio
        if candidate < lower or candidate > upper:
            return ValidationOutcome(
                accepted=False,
                new_price=candidate,
                previous_price=current,
                reason=f"outside_bounds ({lower}-{upper})",
            )

        change_pct = quantize_money((candidate - current) / current * 100)
        return ValidationOutcome(
            accepted=True,
            new_price=candidate,
            previous_price=current,
            change_pct=change_pct,
        )

    async def validate_and_apply(
        self,
        db: AsyncSession,
        item: MarketItem,
        new_price,
        source: str,
        grades: Optional[Dict[str, Decimal]] = None,
        match_confidence: Optional[float] = None,
    ) -> ValidationOutcome:
        """
        Validate a candidate for `item` and, when accepted, persist it.

        Raises:
            PersistenceError: the accepted update could not be committed
                (the session is rolled back first).
        """
        outcome = self.check(item.current_price, new_price)

        if not outcome.accepted:
            logger.warning(
                f"[VALIDATOR] Suspicious price rejected for {item.id} ({item.name}): "
                f"{source} ${outcome.new_price} vs current ${outcome.previous_price} - {outcome.reason}"
            )
            return outcome

        now = utcnow()
        price = quantize_money(outcome.new_price)

        try:
            item.price_24h_ago = outcome.previous_price
            item.change_24h = outcome.change_pct
            item.current_price = price
            item.verified_price = price
            item.verified_source = source
            item.verified_at = now
            item.data_source = source
            item.updated_at = now
            if match_confidence is not None:
                item.match_source = source
                item.match_confidence = Decimal(str(match_confidence))

            db.add(PriceHistory(
                market_item_id=item.id,
                price=price,
                previous_price=outcome.previous_price,
                change_pct=outcome.change_pct,
                source=source,
                recorded_at=now,
            ))

            if grades and (item.category or "").lower() in self.rules.graded_categories:
                await self._upsert_grades(db, item.id, grades, source, now)

            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"[VALIDATOR] Failed to persist price for {item.id}: {e}")
            raise PersistenceError(
                f"Failed to persist price for {item.id}: {e}",
                entity="market_items",
                details={"market_item_id": item.id, "source": source},
            ) from e

        logger.info(
            f"[VALIDATOR] {item.id} ({item.name}): ${outcome.previous_price} -> ${price} via {source}"
        )
        outcome.new_price = price
        return outcome

    async def _upsert_grades(
        self,
        db: AsyncSession,
        market_item_id: str,
        grades: Dict[str, Decimal],
        source: str,
        now,
    ) -> None:
        result = await db.execute(
            select(MarketItemGrade).where(MarketItemGrade.market_item_id == market_item_id)
        )
        existing = {row.grade: row for row in result.scalars().all()}

        for grade, value in grades.items():
            price = to_decimal(value)
            if grade not in GRADE_TIERS or price is None or price <= 0:
                continue
            price = quantize_money(price)
            row = existing.get(grade)
            if row:
                row.price = price
                row.source = source
                row.updated_at = now
            else:
                db.add(MarketItemGrade(
                    market_item_id=market_item_id,
                    grade=grade,
                    price=price,
                    source=source,
                    updated_at=now,
                ))
