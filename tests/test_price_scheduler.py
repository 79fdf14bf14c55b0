"""
Tests for the price scheduler orchestrator.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from cardboom_pricing.adapters.base import PriceQuote
from cardboom_pricing.core.exceptions import ConfigurationError, PersistenceError
from cardboom_pricing.core.utils import utcnow
from cardboom_pricing.jobs.price_scheduler import (
    SCHEDULER_JOB_NAME,
    SchedulerOrchestrator,
    resolve_mode,
)
from cardboom_pricing.models.audit_log import AdminAuditLog
from cardboom_pricing.models.job_lease import JobLease
from cardboom_pricing.models.market_item import Listing
from cardboom_pricing.schemas.scheduler import SchedulerRunRequest
from tests.conftest import FakeAdapter, add_items, load_item, make_item, make_registry


def quote(source, price):
    return PriceQuote(source=source, price_usd=Decimal(price))


def orchestrator(session_factory, rules, *adapters, **kwargs):
    kwargs.setdefault("lease_enabled", False)
    return SchedulerOrchestrator(make_registry(*adapters), rules, session_factory, **kwargs)


# =============================================================================
# Mode resolution
# =============================================================================

@pytest.mark.parametrize("hour,minute,expected", [
    (3, 0, "full_sync"),
    (3, 14, "full_sync"),
    (3, 15, "medium_priority"),
    (12, 30, "medium_priority"),
    (12, 0, "medium_priority"),
    (12, 5, "high_priority"),
    (12, 25, "high_priority"),
    (12, 7, "low_priority"),
])
def test_resolve_auto_mode(hour, minute, expected):
    now = datetime(2026, 1, 1, hour, minute, tzinfo=timezone.utc)
    assert resolve_mode("auto", now) == expected


def test_explicit_mode_passes_through():
    assert resolve_mode("full_sync", datetime(2026, 1, 1, 12, 7, tzinfo=timezone.utc)) == "full_sync"


# =============================================================================
# Batch selection
# =============================================================================

@pytest.mark.asyncio
async def test_max_throughput_orders_never_updated_first(session_factory, rules):
    now = utcnow()
    old, never, recent, unpriced = await add_items(
        session_factory,
        make_item(name="old", updated_at=now - timedelta(days=2)),
        make_item(name="never", updated_at=None),
        make_item(name="recent", updated_at=now - timedelta(minutes=5)),
        make_item(name="unpriced", current_price=None),
    )

    ids = await orchestrator(session_factory, rules).select_items("max_throughput", 10)

    assert ids == [never.id, old.id, recent.id]


@pytest.mark.asyncio
async def test_high_priority_selects_trending_or_viewed(session_factory, rules):
    trending, viewed, quiet = await add_items(
        session_factory,
        make_item(name="trending", is_trending=True, views_24h=1),
        make_item(name="viewed", views_24h=50),
        make_item(name="quiet", views_24h=10),
    )

    ids = await orchestrator(session_factory, rules).select_items("high_priority", 10)

    assert ids == [viewed.id, trending.id]


@pytest.mark.asyncio
async def test_medium_priority_selects_active_listings(session_factory, rules):
    listed, sold, unlisted = await add_items(
        session_factory, make_item(name="listed"), make_item(name="sold"), make_item(name="unlisted"),
    )
    async with session_factory() as db:
        db.add(Listing(market_item_id=listed.id, status="active"))
        db.add(Listing(market_item_id=sold.id, status="sold"))
        await db.commit()

    ids = await orchestrator(session_factory, rules).select_items("medium_priority", 10)

    assert ids == [listed.id]


@pytest.mark.asyncio
async def test_low_priority_excludes_fresh_items(session_factory, rules):
    now = utcnow()
    fresh, stale, never = await add_items(
        session_factory,
        make_item(name="fresh", updated_at=now - timedelta(hours=1)),
        make_item(name="stale", updated_at=now - timedelta(hours=7)),
        make_item(name="never", updated_at=None),
    )

    ids = await orchestrator(session_factory, rules).select_items("low_priority", 10)

    assert ids == [never.id, stale.id]


@pytest.mark.asyncio
async def test_full_sync_doubles_batch(session_factory, rules):
    await add_items(session_factory, *[make_item(name=f"card {i}") for i in range(5)])

    ids = await orchestrator(session_factory, rules).select_items("full_sync", 2)

    assert len(ids) == 4


def test_unknown_mode_raises(rules):
    with pytest.raises(ValueError):
        orchestrator(None, rules).build_selection_query("sometimes", 10)


# =============================================================================
# Refresh chain
# =============================================================================

@pytest.mark.asyncio
async def test_first_source_with_price_wins(session_factory, rules):
    (item,) = await add_items(session_factory, make_item())
    cardmarket = FakeAdapter("cardmarket", quote=quote("cardmarket", "48.00"))
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "60.00"))

    summary = await orchestrator(session_factory, rules, cardmarket, pricecharting).run(
        SchedulerRunRequest(mode="max_throughput")
    )

    assert summary["updated"] == 1
    assert summary["sources"]["cardmarket"]["updated"] == 1
    assert pricecharting.quote_calls == 0
    stored = await load_item(session_factory, item.id)
    assert stored.current_price == Decimal("48.00")
    assert stored.verified_source == "cardmarket"


@pytest.mark.asyncio
async def test_falls_back_past_error_and_empty_source(session_factory, rules, fetch_error):
    (item,) = await add_items(session_factory, make_item())
    cardmarket = FakeAdapter("cardmarket", error=fetch_error)
    pricecharting = FakeAdapter("pricecharting", quote=None)
    ebay = FakeAdapter("ebay", quote=quote("ebay", "50.00"))

    summary = await orchestrator(session_factory, rules, cardmarket, pricecharting, ebay).run(
        SchedulerRunRequest(mode="full_sync")
    )

    assert summary["updated"] == 1
    assert summary["sources"]["cardmarket"]["failed"] == 1
    assert summary["sources"]["pricecharting"]["skipped"] == 1
    assert summary["sources"]["ebay"]["updated"] == 1
    stored = await load_item(session_factory, item.id)
    assert stored.verified_source == "ebay"


@pytest.mark.asyncio
async def test_unsupported_and_unconfigured_sources_are_not_tried(session_factory, rules):
    await add_items(session_factory, make_item())
    cardmarket = FakeAdapter("cardmarket", supported=False)
    pricecharting = FakeAdapter("pricecharting", api_key="")
    ebay = FakeAdapter("ebay", quote=quote("ebay", "50.00"))

    await orchestrator(session_factory, rules, cardmarket, pricecharting, ebay).run(
        SchedulerRunRequest(mode="full_sync")
    )

    assert cardmarket.quote_calls == 0
    assert pricecharting.quote_calls == 0
    assert ebay.quote_calls == 1


@pytest.mark.asyncio
async def test_rejected_price_stamps_item(session_factory, rules):
    (item,) = await add_items(session_factory, make_item(current_price=Decimal("10.00"), updated_at=None))
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "999.00"))
    ebay = FakeAdapter("ebay", quote=quote("ebay", "11.00"))

    summary = await orchestrator(session_factory, rules, pricecharting, ebay).run(
        SchedulerRunRequest(mode="full_sync")
    )

    assert summary["rejected"] == 1
    assert summary["updated"] == 0
    assert ebay.quote_calls == 0
    stored = await load_item(session_factory, item.id)
    assert stored.current_price == Decimal("10.00")
    assert stored.updated_at is not None


@pytest.mark.asyncio
async def test_no_price_anywhere_is_skipped_and_stamped(session_factory, rules):
    (item,) = await add_items(session_factory, make_item(updated_at=None))
    pricecharting = FakeAdapter("pricecharting", quote=None)

    summary = await orchestrator(session_factory, rules, pricecharting).run(SchedulerRunRequest(mode="full_sync"))

    assert summary["skipped"] == 1
    stored = await load_item(session_factory, item.id)
    assert stored.updated_at is not None


@pytest.mark.asyncio
async def test_all_sources_failing_leaves_item_stale(session_factory, rules, fetch_error):
    (item,) = await add_items(session_factory, make_item(updated_at=None))
    pricecharting = FakeAdapter("pricecharting", error=fetch_error)

    summary = await orchestrator(session_factory, rules, pricecharting).run(SchedulerRunRequest(mode="full_sync"))

    assert summary["failed"] == 1
    assert len(summary["errors"]) == 1
    stored = await load_item(session_factory, item.id)
    assert stored.updated_at is None


@pytest.mark.asyncio
async def test_persistence_failure_counts_against_source(session_factory, rules, monkeypatch):
    await add_items(session_factory, make_item(updated_at=None))
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))
    scheduler = orchestrator(session_factory, rules, pricecharting)

    async def failing_apply(db, item, candidate, **kwargs):
        raise PersistenceError("price write failed", entity="market_item")

    monkeypatch.setattr(scheduler.validator, "validate_and_apply", failing_apply)
    summary = await scheduler.run(SchedulerRunRequest(mode="full_sync"))

    assert summary["failed"] == 1
    assert summary["sources"]["pricecharting"]["failed"] == 1
    assert summary["sources"]["pricecharting"]["updated"] == 0
    assert any("price write failed" in error for error in summary["errors"])


@pytest.mark.asyncio
async def test_counts_partition_selected_items(session_factory, rules):
    await add_items(session_factory, *[make_item(name=f"card {i}") for i in range(4)])
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))

    summary = await orchestrator(session_factory, rules, pricecharting, max_workers=3).run(
        SchedulerRunRequest(mode="full_sync")
    )

    total = summary["updated"] + summary["rejected"] + summary["skipped"] + summary["failed"] + summary["deferred"]
    assert summary["selected"] == 4
    assert total == 4


@pytest.mark.asyncio
async def test_deadline_defers_remaining_items(session_factory, rules):
    await add_items(session_factory, *[make_item(name=f"card {i}") for i in range(3)])
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))

    summary = await orchestrator(session_factory, rules, pricecharting, deadline_seconds=1e-9).run(
        SchedulerRunRequest(mode="full_sync")
    )

    assert summary["deferred"] == 3
    assert pricecharting.quote_calls == 0


@pytest.mark.asyncio
async def test_no_configured_source_raises(session_factory, rules):
    with pytest.raises(ConfigurationError):
        await orchestrator(session_factory, rules, FakeAdapter("ebay", api_key="")).run(
            SchedulerRunRequest(mode="full_sync")
        )


# =============================================================================
# Audit + lease
# =============================================================================

@pytest.mark.asyncio
async def test_writes_one_audit_row(session_factory, rules):
    await add_items(session_factory, make_item())
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))

    await orchestrator(session_factory, rules, pricecharting).run(SchedulerRunRequest(mode="full_sync"))

    async with session_factory() as db:
        (row,) = (await db.execute(select(AdminAuditLog))).scalars().all()
    assert row.action == "price_sync"
    assert row.actor == "system"
    assert row.details["mode"] == "full_sync"
    assert row.details["updated"] == 1
    assert row.details["sources"]["pricecharting"]["updated"] == 1
    assert [entry["name"] for entry in row.details["adapters"]] == ["pricecharting"]


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_run(session_factory, rules, monkeypatch):
    def broken_audit(**kwargs):
        raise RuntimeError("audit table missing")

    monkeypatch.setattr("cardboom_pricing.jobs.price_scheduler.AdminAuditLog", broken_audit)
    await add_items(session_factory, make_item())
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))

    summary = await orchestrator(session_factory, rules, pricecharting).run(SchedulerRunRequest(mode="full_sync"))

    assert summary["success"] is True
    assert summary["updated"] == 1


@pytest.mark.asyncio
async def test_held_lease_skips_run(session_factory, rules):
    await add_items(session_factory, make_item())
    async with session_factory() as db:
        db.add(JobLease(
            job_name=SCHEDULER_JOB_NAME,
            holder="other-run",
            acquired_at=utcnow(),
            expires_at=utcnow() + timedelta(minutes=10),
        ))
        await db.commit()
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))

    summary = await orchestrator(session_factory, rules, pricecharting, lease_enabled=True).run(
        SchedulerRunRequest(mode="full_sync")
    )

    assert summary["status"] == "skipped"
    assert summary["reason"] == "lease_held"
    assert pricecharting.quote_calls == 0


@pytest.mark.asyncio
async def test_lease_released_after_run(session_factory, rules):
    await add_items(session_factory, make_item())
    pricecharting = FakeAdapter("pricecharting", quote=quote("pricecharting", "46.00"))
    scheduler = orchestrator(session_factory, rules, pricecharting, lease_enabled=True)

    first = await scheduler.run(SchedulerRunRequest(mode="full_sync"))
    second = await scheduler.run(SchedulerRunRequest(mode="full_sync"))

    assert first["status"] == "completed"
    assert second["status"] == "completed"
    async with session_factory() as db:
        lease = await db.get(JobLease, SCHEDULER_JOB_NAME)
    assert lease.holder is None
