"""
Price Event Ingestion Job v1.0.0

Pulls raw pricing observations for catalog items from one source and turns
them into PriceEvents, routing each by match confidence:

    >= 0.90        eligible; the median of the item's eligible, non-outlier
                   prices goes to PriceValidator (one call per item/source)
    [0.70, 0.90)   one MatchReviewQueue entry per event (outliers included),
                   catalog untouched
    < 0.70         event recorded only

Per item:
1. Derive the canonical key (persisted once if the item has none)
2. Fetch observations (eBay sold listings, Cardmarket card search,
   PriceCharting product search, or the payload's manual observations)
3. Score; search-style sources keep only the best of the first five
4. Outlier check on title + description
5. Upsert PriceEvent keyed by (source, source_event_id)
6. Confidence gating; a confident Cardmarket match also records
   cardmarket_id / cardmarket_trend on the item

Each item runs in its own session; a failure is appended to the run's error
list and the batch continues. Writes are idempotent upserts, so concurrent or
repeated runs are safe without a lease.
"""
import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from statistics import median
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardboom_pricing.adapters import AdapterRegistry, SourceObservation, build_adapter_registry
from cardboom_pricing.core.config import PricingRules, Settings, settings as default_settings
from cardboom_pricing.core.database import AsyncSessionLocal
from cardboom_pricing.core.exceptions import ConfigurationError, PricingBaseError, SourceError
from cardboom_pricing.core.http_client import ResilientHTTPClient, SourceGateRegistry
from cardboom_pricing.core.utils import quantize_money, utcnow
from cardboom_pricing.models.market_item import MarketItem
from cardboom_pricing.models.price_event import PriceEvent
from cardboom_pricing.schemas.ingestion import IngestRequest, IngestResponse, ManualObservation
from cardboom_pricing.services.canonical_key import CanonicalKeyBuilder
from cardboom_pricing.services.match_review_service import MatchReviewService
from cardboom_pricing.services.match_scoring import MatchScorer, PositionalOverlapScorer
from cardboom_pricing.services.outlier_detection import OutlierDetector
from cardboom_pricing.services.price_validator import PriceValidator

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"


def fallback_event_id(source: str) -> str:
    """'{source}_{epoch_ms}_{random}' for observations without a source id."""
    epoch_ms = int(utcnow().timestamp() * 1000)
    return f"{source}_{epoch_ms}_{secrets.token_hex(4)}"


def manual_to_observations(item: MarketItem, entries: List[ManualObservation]) -> List[SourceObservation]:
    observations = []
    for entry in entries:
        exact = bool(
            entry.card_number and item.card_number
            and entry.card_number.strip() == str(item.card_number).strip()
        )
        observations.append(SourceObservation(
            source=MANUAL_SOURCE,
            price=entry.price,
            currency=entry.currency,
            event_type="sale",
            source_event_id=entry.source_event_id,
            name=entry.title,
            title=entry.title,
            description=entry.description,
            external_url=entry.url,
            observed_at=entry.sold_at,
            has_exact_number=exact,
            raw=entry.model_dump(mode="json", by_alias=True),
        ))
    return observations


@dataclass
class ScoredObservation:
    observation: SourceObservation
    confidence: float
    event: Optional[PriceEvent] = None
    is_outlier: bool = False
    outlier_reason: Optional[str] = None


class PriceEventIngestor:
    """Runs one ingestion trigger end to end."""

    def __init__(
        self,
        registry: AdapterRegistry,
        rules: Optional[PricingRules] = None,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        scorer: Optional[MatchScorer] = None,
        key_builder: Optional[CanonicalKeyBuilder] = None,
    ):
        self.registry = registry
        self.rules = rules or PricingRules()
        self.session_factory = session_factory
        self.scorer = scorer or PositionalOverlapScorer()
        self.key_builder = key_builder or CanonicalKeyBuilder()
        self.detector = OutlierDetector(self.rules.outlier_terms)
        self.validator = PriceValidator(self.rules)

    # =========================================================================
    # Item selection
    # =========================================================================

    async def _select_item_ids(self, request: IngestRequest) -> List[str]:
        query = select(MarketItem.id)
        if request.category:
            query = query.where(func.lower(MarketItem.category) == request.category.lower())

        ids = request.market_item_ids
        if request.source == MANUAL_SOURCE and not ids and request.observations:
            ids = list(request.observations.keys())
        if ids:
            query = query.where(MarketItem.id.in_(ids))

        query = query.order_by(MarketItem.id).limit(request.limit)
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    # =========================================================================
    # Per-item processing
    # =========================================================================

    async def _fetch_observations(
        self, item: MarketItem, request: IngestRequest
    ) -> List[SourceObservation]:
        if request.source == MANUAL_SOURCE:
            entries = (request.observations or {}).get(item.id, [])
            return manual_to_observations(item, entries)
        return await self.registry.get(request.source).search(item)

    def _score(self, item: MarketItem, observations: List[SourceObservation], search_style: bool) -> List[ScoredObservation]:
        scored = [
            ScoredObservation(
                observation=obs,
                confidence=self.scorer.score(obs.name or obs.title or "", item.name, obs.has_exact_number),
            )
            for obs in observations
        ]
        if not search_style or not scored:
            return scored

        # Search results: only the best of the first few candidates is an observation of this item
        best = None
        for candidate in scored[: self.rules.max_search_candidates]:
            if best is None or candidate.confidence > best.confidence:
                best = candidate
        return [best]

    def _amounts(self, obs: SourceObservation) -> Tuple[Decimal, Optional[Decimal], Optional[Decimal]]:
        """(total_price, total_usd, total_eur)"""
        price = quantize_money(obs.price)
        if obs.currency == "EUR":
            return price, quantize_money(obs.price * self.rules.eur_usd_rate), price
        return price, price, None

    async def _upsert_event(
        self,
        db: AsyncSession,
        item: MarketItem,
        canonical_key: Optional[str],
        scored: ScoredObservation,
    ) -> bool:
        """Insert or refresh the event for this observation; True when a row was inserted."""
        obs = scored.observation
        verdict = self.detector.check(obs.title, obs.description)
        scored.is_outlier = verdict.is_outlier
        total_price, total_usd, total_eur = self._amounts(obs)
        now = utcnow()

        source_event_id = obs.source_event_id or fallback_event_id(obs.source)
        eligible = not verdict.is_outlier and scored.confidence >= self.rules.auto_apply_threshold

        values = dict(
            external_url=obs.external_url,
            raw_json=obs.raw,
            external_canonical_key=canonical_key,
            currency=obs.currency,
            total_price=total_price,
            total_usd=total_usd,
            total_eur=total_eur,
            event_type=obs.event_type,
            sold_at=obs.observed_at or (now if obs.event_type == "sale" else None),
            matched_market_item_id=item.id,
            match_confidence=Decimal(str(scored.confidence)),
            is_outlier=verdict.is_outlier,
            outlier_reason=verdict.reason,
            is_processed=eligible,
            updated_at=now,
        )

        result = await db.execute(
            select(PriceEvent).where(
                and_(PriceEvent.source == obs.source, PriceEvent.source_event_id == source_event_id)
            )
        )
        event = result.scalar_one_or_none()
        created = event is None
        if created:
            event = PriceEvent(source=obs.source, source_event_id=source_event_id, ingested_at=now, **values)
            db.add(event)
        else:
            for key, value in values.items():
                setattr(event, key, value)

        scored.event = event
        scored.outlier_reason = verdict.reason
        return created

    async def _process_item(
        self,
        db: AsyncSession,
        item: MarketItem,
        request: IngestRequest,
        results: IngestResponse,
    ) -> None:
        canonical_key = item.external_canonical_key or self.key_builder.build_for_item(item)
        if canonical_key and not item.external_canonical_key:
            item.external_canonical_key = canonical_key

        try:
            observations = await self._fetch_observations(item, request)
        except SourceError as e:
            logger.warning(f"[INGEST] {request.source} fetch failed for {item.id}: {e.message}")
            results.errors.append(f"{item.id}: {e.message}")
            await db.commit()  # keep the canonical key
            return

        adapter = self.registry.get(request.source)
        search_style = bool(adapter and adapter.search_style)
        scored_list = self._score(item, observations, search_style)

        for scored in scored_list:
            if await self._upsert_event(db, item, canonical_key, scored):
                results.events_created += 1
            else:
                results.events_updated += 1
            if scored.is_outlier:
                results.outliers += 1

        eligible = [
            s for s in scored_list
            if not s.is_outlier and s.confidence >= self.rules.auto_apply_threshold
        ]
        # Outliers still go to review; they are only kept out of pricing
        review = [
            s for s in scored_list
            if self.rules.review_threshold <= s.confidence < self.rules.auto_apply_threshold
        ]

        self._record_cardmarket_match(item, eligible)
        await db.commit()

        if review:
            review_service = MatchReviewService(db, self.rules)
            for scored in review:
                obs = scored.observation
                _, created = await review_service.add_to_queue(
                    source=obs.source,
                    source_event_id=scored.event.source_event_id,
                    market_item_id=item.id,
                    confidence=scored.confidence,
                    external_data={
                        "name": obs.name,
                        "title": obs.title,
                        "price": str(obs.price),
                        "currency": obs.currency,
                        "url": obs.external_url,
                        "external_id": obs.external_id,
                        "is_outlier": scored.is_outlier,
                        "outlier_reason": scored.outlier_reason,
                    },
                )
                if created:
                    results.queued_for_review += 1

        if not eligible:
            return

        results.items_matched += 1
        best = max(eligible, key=lambda s: s.confidence)
        candidate = median([s.event.total_usd for s in eligible])

        outcome = await self.validator.validate_and_apply(
            db,
            item,
            candidate,
            source=request.source,
            grades=best.observation.grades,
            match_confidence=best.confidence,
        )
        if outcome.accepted:
            results.prices_updated += 1
        else:
            results.prices_rejected += 1

    def _record_cardmarket_match(self, item: MarketItem, eligible: List[ScoredObservation]) -> None:
        """Copy the best confident Cardmarket match onto the item (identity only, no price)."""
        matches = [s for s in eligible if s.observation.source == "cardmarket" and s.observation.external_id]
        if not matches:
            return
        best = max(matches, key=lambda s: s.confidence)
        item.cardmarket_id = str(best.observation.external_id)
        item.cardmarket_trend = best.event.total_usd
        item.match_source = "cardmarket"
        item.match_confidence = Decimal(str(best.confidence))

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, request: IngestRequest) -> Dict[str, Any]:
        """
        Execute one ingestion trigger.

        Raises:
            ConfigurationError: the requested source has no credential configured.
        """
        if request.source != MANUAL_SOURCE:
            adapter = self.registry.get(request.source)
            if adapter is None:
                raise ConfigurationError(
                    f"Unknown price source: {request.source} "
                    f"(registered: {', '.join(self.registry.list_adapters()) or 'none'})",
                    setting="source",
                )
            adapter.require_configured()

        logger.info(
            f"[INGEST] Starting ingestion - source: {request.source}, "
            f"category: {request.category}, limit: {request.limit}"
        )

        results = IngestResponse(source=request.source)
        item_ids = await self._select_item_ids(request)
        logger.info(f"[INGEST] Processing {len(item_ids)} items")

        for item_id in item_ids:
            async with self.session_factory() as db:
                try:
                    item = await db.get(MarketItem, item_id)
                    if item is None:
                        continue
                    results.items_processed += 1
                    await self._process_item(db, item, request, results)
                except PricingBaseError as e:
                    await db.rollback()
                    logger.error(f"[INGEST] {item_id}: {e.message}")
                    results.errors.append(f"{item_id}: {e.message}")
                except Exception as e:
                    await db.rollback()
                    logger.exception(f"[INGEST] Error processing {item_id}")
                    results.errors.append(f"{item_id}: {e}")

        results.adapter_stats = self.registry.get_stats()
        logger.info(
            f"[INGEST] Completed - events: {results.events_created} new / {results.events_updated} updated, "
            f"matched: {results.items_matched}, "
            f"queued: {results.queued_for_review}, updated: {results.prices_updated}, "
            f"rejected: {results.prices_rejected}, outliers: {results.outliers}, errors: {len(results.errors)}"
        )
        return results.model_dump()


async def run_price_ingestion_job(
    request: IngestRequest,
    settings: Settings = default_settings,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    registry: Optional[AdapterRegistry] = None,
) -> Dict[str, Any]:
    """Entry point used by the API route and the CLI."""
    rules = PricingRules.from_settings(settings)

    if registry is not None:
        return await PriceEventIngestor(registry, rules, session_factory).run(request)

    gates = SourceGateRegistry(
        delay_seconds=settings.INGEST_DELAY_MS / 1000,
        limits={
            "cardmarket": settings.CARDMARKET_MAX_CONCURRENCY,
            "pricecharting": settings.PRICECHARTING_MAX_CONCURRENCY,
            "ebay": settings.EBAY_MAX_CONCURRENCY,
        },
    )
    async with ResilientHTTPClient() as client:
        registry = build_adapter_registry(settings, client, rules, gates)
        return await PriceEventIngestor(registry, rules, session_factory).run(request)
