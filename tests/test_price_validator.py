"""
Tests for the price validator (bounds check + persistence).
"""
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from cardboom_pricing.core.exceptions import PersistenceError
from cardboom_pricing.models.market_item import MarketItem, MarketItemGrade
from cardboom_pricing.models.price_history import PriceHistory
from cardboom_pricing.services.price_validator import PriceValidator
from tests.conftest import add_items, make_item


# =============================================================================
# Bounds check
# =============================================================================

class TestCheck:
    @pytest.mark.parametrize("candidate,accepted", [
        ("500.00", True),
        ("500.01", False),
        ("20.00", True),
        ("19.99", False),
        ("100.00", True),
    ])
    def test_ratio_bounds_are_inclusive(self, rules, candidate, accepted):
        outcome = PriceValidator(rules).check(Decimal("100.00"), Decimal(candidate))
        assert outcome.accepted is accepted

    def test_change_percentage(self, rules):
        outcome = PriceValidator(rules).check(Decimal("100"), Decimal("150"))
        assert outcome.change_pct == Decimal("50.00")

    @pytest.mark.parametrize("current", [None, Decimal("0")])
    def test_cold_start_accepts_anything_positive(self, rules, current):
        outcome = PriceValidator(rules).check(current, Decimal("9999.99"))
        assert outcome.accepted
        assert outcome.change_pct is None

    @pytest.mark.parametrize("candidate", [Decimal("0"), Decimal("-5"), None])
    def test_non_positive_always_rejected(self, rules, candidate):
        outcome = PriceValidator(rules).check(None, candidate)
        assert outcome.rejected
        assert outcome.reason == "non_positive_price"

    def test_rejection_reason_names_bounds(self, rules):
        outcome = PriceValidator(rules).check(Decimal("10"), Decimal("100"))
        assert outcome.reason.startswith("outside_bounds")


# =============================================================================
# Persistence
# =============================================================================

class TestValidateAndApply:
    @pytest.mark.asyncio
    async def test_accepted_price_updates_item_and_history(self, session_factory, rules):
        (item,) = await add_items(session_factory, make_item(current_price=Decimal("100.00")))

        async with session_factory() as db:
            loaded = await db.get(MarketItem, item.id)
            outcome = await PriceValidator(rules).validate_and_apply(db, loaded, Decimal("120"), source="ebay")

        assert outcome.accepted
        async with session_factory() as db:
            stored = await db.get(MarketItem, item.id)
            history = (await db.execute(select(PriceHistory))).scalars().all()

        assert stored.current_price == Decimal("120.00")
        assert stored.verified_price == Decimal("120.00")
        assert stored.verified_source == "ebay"
        assert stored.price_24h_ago == Decimal("100.00")
        assert stored.change_24h == Decimal("20.00")
        assert stored.updated_at is not None
        assert len(history) == 1
        assert history[0].previous_price == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_rejected_price_leaves_item_untouched(self, session_factory, rules):
        (item,) = await add_items(session_factory, make_item(current_price=Decimal("100.00")))

        async with session_factory() as db:
            loaded = await db.get(MarketItem, item.id)
            outcome = await PriceValidator(rules).validate_and_apply(db, loaded, Decimal("500.01"), source="ebay")

        assert outcome.rejected
        async with session_factory() as db:
            stored = await db.get(MarketItem, item.id)
            history = (await db.execute(select(PriceHistory))).scalars().all()
        assert stored.current_price == Decimal("100.00")
        assert stored.verified_source is None
        assert history == []

    @pytest.mark.asyncio
    async def test_grades_upserted_for_graded_games(self, session_factory, rules):
        (item,) = await add_items(session_factory, make_item(current_price=None))
        validator = PriceValidator(rules)

        async with session_factory() as db:
            loaded = await db.get(MarketItem, item.id)
            await validator.validate_and_apply(
                db, loaded, Decimal("50"), source="pricecharting",
                grades={"raw": Decimal("50"), "psa10": Decimal("400"), "bogus": Decimal("1")},
            )
        async with session_factory() as db:
            loaded = await db.get(MarketItem, item.id)
            await validator.validate_and_apply(
                db, loaded, Decimal("55"), source="pricecharting", grades={"psa10": Decimal("450")},
            )

        async with session_factory() as db:
            rows = (await db.execute(
                select(MarketItemGrade).where(MarketItemGrade.market_item_id == item.id)
            )).scalars().all()
        by_grade = {row.grade: row.price for row in rows}
        assert by_grade == {"raw": Decimal("50.00"), "psa10": Decimal("450.00")}

    @pytest.mark.asyncio
    async def test_grades_ignored_for_ungraded_category(self, session_factory, rules):
        (item,) = await add_items(session_factory, make_item(category="figures", current_price=None))

        async with session_factory() as db:
            loaded = await db.get(MarketItem, item.id)
            await PriceValidator(rules).validate_and_apply(
                db, loaded, Decimal("30"), source="pricecharting", grades={"raw": Decimal("30")},
            )
            rows = (await db.execute(select(MarketItemGrade))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_commit_failure_raises_persistence_error(self, mock_db, rules):
        mock_db.commit.side_effect = OperationalError("UPDATE", {}, Exception("db gone"))
        item = make_item(id="item-1", current_price=Decimal("10.00"))

        with pytest.raises(PersistenceError) as exc_info:
            await PriceValidator(rules).validate_and_apply(mock_db, item, Decimal("12"), source="ebay")

        assert exc_info.value.details["market_item_id"] == "item-1"
        mock_db.rollback.assert_awaited_once()
