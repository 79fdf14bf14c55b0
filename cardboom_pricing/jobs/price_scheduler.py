"""
Price Scheduler Job v1.0.0

Decides which catalog items to refresh and from where, then delegates every
price change to PriceValidator.

Modes:
- max_throughput:  priced items, least recently updated first (never-updated first)
- high_priority:   trending or views_24h above the threshold, most viewed first
- medium_priority: items backing active marketplace listings
- low_priority:    items not updated within the staleness window, stalest first
- full_sync:       whole catalog by category then id, batch x 2
- auto:            picked from the UTC clock (see resolve_mode)

Per item, the source fallback chain stops at the first usable price:
    Cardmarket (supported games with a cardmarket_id)
    -> PriceCharting
    -> eBay (auction-only categories, median of >= 3 non-outlier sales)

Item states are mutually exclusive: Updated | Rejected | Skipped | Failed
(plus Deferred when the run deadline passes before the item starts). Items
that did not fail get updated_at stamped so staleness rotation moves on;
failed items are left for the next run.

Runs are serialized through the 'price_scheduler' job lease. Exactly one
admin_audit_log row is written per completed run; failing to write it never
fails the run.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardboom_pricing.adapters import AdapterRegistry, build_adapter_registry
from cardboom_pricing.core.config import PricingRules, Settings, settings as default_settings
from cardboom_pricing.core.database import AsyncSessionLocal
from cardboom_pricing.core.exceptions import (
    ConfigurationError,
    PersistenceError,
    PricingBaseError,
    SourceError,
)
from cardboom_pricing.core.http_client import ResilientHTTPClient, SourceGateRegistry
from cardboom_pricing.core.utils import utcnow
from cardboom_pricing.jobs.job_lease import release_lease, try_claim_lease
from cardboom_pricing.models.audit_log import AdminAuditLog
from cardboom_pricing.models.market_item import Listing, MarketItem
from cardboom_pricing.schemas.scheduler import SchedulerRunRequest, SchedulerRunResponse, SourceCounters
from cardboom_pricing.services.price_validator import PriceValidator

logger = logging.getLogger(__name__)

SCHEDULER_JOB_NAME = "price_scheduler"

# Fallback chain order
SOURCE_CHAIN = ("cardmarket", "pricecharting", "ebay")


class ItemState(str, Enum):
    UPDATED = "updated"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    FAILED = "failed"
    DEFERRED = "deferred"


@dataclass
class ItemOutcome:
    item_id: str
    state: ItemState
    source: Optional[str] = None
    attempted: List[str] = field(default_factory=list)
    error: Optional[str] = None


def resolve_mode(mode: str, now: Optional[datetime] = None) -> str:
    """
    Map 'auto' to a concrete mode from the UTC clock.

    03:00-03:14 -> full_sync; minute % 15 == 0 -> medium_priority;
    minute % 5 == 0 -> high_priority; otherwise low_priority.
    The %15 check runs first because every multiple of 15 is also a multiple of 5.
    """
    if mode != "auto":
        return mode

    now = now or utcnow()
    if now.hour == 3 and now.minute < 15:
        return "full_sync"
    if now.minute % 15 == 0:
        return "medium_priority"
    if now.minute % 5 == 0:
        return "high_priority"
    return "low_priority"


class SchedulerOrchestrator:
    """Selects a batch and refreshes each item through the source chain."""

    def __init__(
        self,
        registry: AdapterRegistry,
        rules: Optional[PricingRules] = None,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        max_workers: int = 1,
        deadline_seconds: float = 0,
        lease_enabled: bool = True,
        lease_ttl_seconds: int = 900,
    ):
        self.registry = registry
        self.rules = rules or PricingRules()
        self.session_factory = session_factory
        self.max_workers = max(1, max_workers)
        self.deadline_seconds = deadline_seconds
        self.lease_enabled = lease_enabled
        self.lease_ttl_seconds = lease_ttl_seconds
        self.validator = PriceValidator(self.rules)

    # =========================================================================
    # Batch selection
    # =========================================================================

    def build_selection_query(self, mode: str, batch_size: int, now: Optional[datetime] = None):
        now = now or utcnow()
        query = select(MarketItem.id)

        if mode == "max_throughput":
            return (
                query.where(MarketItem.current_price > 0)
                .order_by(MarketItem.updated_at.asc().nulls_first(), MarketItem.id)
                .limit(batch_size)
            )

        if mode == "high_priority":
            return (
                query.where(
                    or_(
                        MarketItem.is_trending == True,  # noqa: E712
                        MarketItem.views_24h > self.rules.high_priority_view_threshold,
                    )
                )
                .order_by(MarketItem.views_24h.desc().nulls_last(), MarketItem.id)
                .limit(batch_size)
            )

        if mode == "medium_priority":
            active = (
                select(Listing.market_item_id)
                .where(Listing.status == "active", Listing.market_item_id.is_not(None))
            )
            return (
                query.where(MarketItem.id.in_(active))
                .order_by(MarketItem.updated_at.asc().nulls_first(), MarketItem.id)
                .limit(batch_size)
            )

        if mode == "low_priority":
            cutoff = now - timedelta(hours=self.rules.staleness_hours)
            return (
                query.where(or_(MarketItem.updated_at.is_(None), MarketItem.updated_at < cutoff))
                .order_by(MarketItem.updated_at.asc().nulls_first(), MarketItem.id)
                .limit(batch_size)
            )

        if mode == "full_sync":
            return query.order_by(MarketItem.category, MarketItem.id).limit(batch_size * 2)

        raise ValueError(f"Unknown scheduler mode: {mode}")

    async def select_items(self, mode: str, batch_size: int) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(self.build_selection_query(mode, batch_size))
            return list(result.scalars().all())

    # =========================================================================
    # Per-item processing
    # =========================================================================

    async def _stamp(self, db: AsyncSession, item: MarketItem) -> None:
        item.updated_at = utcnow()
        await db.commit()

    async def _refresh_item(self, item_id: str, results: SchedulerRunResponse) -> ItemOutcome:
        async with self.session_factory() as db:
            item = await db.get(MarketItem, item_id)
            if item is None:
                return ItemOutcome(item_id=item_id, state=ItemState.SKIPPED)

            outcome = ItemOutcome(item_id=item_id, state=ItemState.SKIPPED)
            answered = False

            for source in SOURCE_CHAIN:
                adapter = self.registry.get(source)
                if adapter is None or not adapter.is_configured or not adapter.supports(item):
                    continue

                counters = results.sources.setdefault(source, SourceCounters())
                outcome.attempted.append(source)

                try:
                    quote = await adapter.fetch_quote(item)
                except SourceError as e:
                    counters.failed += 1
                    logger.warning(f"[SCHEDULER] {source} failed for {item_id}: {e.message}")
                    results.errors.append(f"{item_id}: {source}: {e.message}")
                    continue

                answered = True
                if quote is None:
                    counters.skipped += 1
                    continue

                try:
                    validation = await self.validator.validate_and_apply(
                        db, item, quote.price_usd, source=source, grades=quote.grades
                    )
                except PersistenceError:
                    counters.failed += 1
                    raise
                outcome.source = source
                if validation.accepted:
                    counters.updated += 1
                    outcome.state = ItemState.UPDATED
                    return outcome

                counters.rejected += 1
                outcome.state = ItemState.REJECTED
                await self._stamp(db, item)
                return outcome

            if outcome.attempted and not answered:
                # Every source errored; leave the item stale so the next run retries it
                outcome.state = ItemState.FAILED
                outcome.error = "all sources failed"
                return outcome

            await self._stamp(db, item)
            return outcome

    async def _run_item(
        self,
        item_id: str,
        workers: asyncio.Semaphore,
        deadline: Optional[float],
        results: SchedulerRunResponse,
    ) -> ItemOutcome:
        async with workers:
            if deadline is not None and time.monotonic() >= deadline:
                return ItemOutcome(item_id=item_id, state=ItemState.DEFERRED)
            try:
                return await self._refresh_item(item_id, results)
            except PricingBaseError as e:
                logger.error(f"[SCHEDULER] Error processing {item_id}: {e.message}")
                results.errors.append(f"{item_id}: {e.message}")
                return ItemOutcome(item_id=item_id, state=ItemState.FAILED, error=e.message)
            except Exception as e:
                logger.exception(f"[SCHEDULER] Error processing {item_id}")
                results.errors.append(f"{item_id}: {e}")
                return ItemOutcome(item_id=item_id, state=ItemState.FAILED, error=str(e))

    # =========================================================================
    # Audit
    # =========================================================================

    async def _write_audit(self, results: SchedulerRunResponse) -> None:
        try:
            async with self.session_factory() as db:
                db.add(AdminAuditLog(
                    action="price_sync",
                    actor="system",
                    details={
                        "mode": results.mode,
                        "duration_ms": results.duration_ms,
                        "selected": results.selected,
                        "updated": results.updated,
                        "rejected": results.rejected,
                        "skipped": results.skipped,
                        "failed": results.failed,
                        "deferred": results.deferred,
                        "sources": {k: v.model_dump() for k, v in results.sources.items()},
                        "adapters": results.adapter_stats,
                    },
                ))
                await db.commit()
        except Exception as e:
            logger.error(f"[SCHEDULER] Failed to write audit log: {e}")

    # =========================================================================
    # Run
    # =========================================================================

    def _check_configured(self) -> None:
        configured = [
            source for source in SOURCE_CHAIN
            if self.registry.get(source) is not None and self.registry.get(source).is_configured
        ]
        if not configured:
            raise ConfigurationError(
                "No price source configured (set CARDMARKET_RAPIDAPI_KEY, "
                "PRICECHARTING_API_TOKEN or EBAY_RAPIDAPI_KEY)",
                setting="PRICECHARTING_API_TOKEN",
            )

    async def _execute(self, mode: str, request: SchedulerRunRequest, started: float) -> SchedulerRunResponse:
        results = SchedulerRunResponse(
            mode=mode,
            sources={source: SourceCounters() for source in SOURCE_CHAIN},
        )

        item_ids = await self.select_items(mode, request.batch_size)
        results.selected = len(item_ids)
        logger.info(f"[SCHEDULER] Mode: {mode}, batch: {request.batch_size}, found {len(item_ids)} items")

        workers = asyncio.Semaphore(self.max_workers)
        deadline = started + self.deadline_seconds if self.deadline_seconds else None

        outcomes = await asyncio.gather(
            *(self._run_item(item_id, workers, deadline, results) for item_id in item_ids)
        )

        for outcome in outcomes:
            if outcome.state == ItemState.UPDATED:
                results.updated += 1
            elif outcome.state == ItemState.REJECTED:
                results.rejected += 1
            elif outcome.state == ItemState.SKIPPED:
                results.skipped += 1
            elif outcome.state == ItemState.FAILED:
                results.failed += 1
            else:
                results.deferred += 1

        results.adapter_stats = self.registry.get_stats()
        results.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[SCHEDULER] Completed in {results.duration_ms}ms - updated: {results.updated}, "
            f"rejected: {results.rejected}, skipped: {results.skipped}, failed: {results.failed}, "
            f"deferred: {results.deferred}"
        )
        await self._write_audit(results)
        return results

    async def run(self, request: SchedulerRunRequest, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Execute one scheduler trigger.

        Raises:
            ConfigurationError: no price source has a credential.
        """
        started = time.monotonic()
        self._check_configured()
        mode = resolve_mode(request.mode, now)

        if not self.lease_enabled:
            return (await self._execute(mode, request, started)).model_dump()

        async with self.session_factory() as db:
            holder = await try_claim_lease(db, SCHEDULER_JOB_NAME, self.lease_ttl_seconds)
        if holder is None:
            logger.info(f"[SCHEDULER] Another run holds the lease, skipping ({mode})")
            return SchedulerRunResponse(
                status="skipped", reason="lease_held", mode=mode
            ).model_dump(exclude={"sources", "errors", "adapter_stats"})

        try:
            return (await self._execute(mode, request, started)).model_dump()
        finally:
            async with self.session_factory() as db:
                await release_lease(db, SCHEDULER_JOB_NAME, holder)


async def run_price_scheduler_job(
    request: SchedulerRunRequest,
    settings: Settings = default_settings,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    registry: Optional[AdapterRegistry] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Entry point used by the API route and the CLI."""
    rules = PricingRules.from_settings(settings)

    def orchestrator(reg: AdapterRegistry) -> SchedulerOrchestrator:
        return SchedulerOrchestrator(
            reg,
            rules,
            session_factory,
            max_workers=settings.SCHEDULER_MAX_WORKERS,
            deadline_seconds=settings.SCHEDULER_RUN_DEADLINE_SECONDS,
            lease_enabled=settings.SCHEDULER_LEASE_ENABLED,
            lease_ttl_seconds=settings.SCHEDULER_LEASE_TTL_SECONDS,
        )

    if registry is not None:
        return await orchestrator(registry).run(request, now)

    gates = SourceGateRegistry(
        delay_seconds=request.delay_ms / 1000,
        limits={
            "cardmarket": settings.CARDMARKET_MAX_CONCURRENCY,
            "pricecharting": settings.PRICECHARTING_MAX_CONCURRENCY,
            "ebay": settings.EBAY_MAX_CONCURRENCY,
        },
    )
    async with ResilientHTTPClient() as client:
        registry = build_adapter_registry(settings, client, rules, gates)
        return await orchestrator(registry).run(request, now)
