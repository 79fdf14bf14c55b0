"""
eBay Adapter (RapidAPI ebay-search-result)

Sold-listing search. Every listing is an independent sale, so ingestion keeps
all of them (first ten); the scheduler uses the median of at least three
non-outlier sales.
"""
import logging
from statistics import median
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from cardboom_pricing.adapters.base import PriceQuote, PriceSourceAdapter, SourceObservation
from cardboom_pricing.core.exceptions import ParseError
from cardboom_pricing.core.utils import parse_datetime, quantize_money, to_decimal
from cardboom_pricing.models.market_item import MarketItem
from cardboom_pricing.services.outlier_detection import OutlierDetector

logger = logging.getLogger(__name__)

EBAY_HOST = "ebay-search-result.p.rapidapi.com"


def build_search_query(item: MarketItem) -> str:
    parts = [item.name]
    if item.set_code and item.card_number:
        parts.append(f"{item.set_code}-{item.card_number}")
    return " ".join(parts)


class EbayAdapter(PriceSourceAdapter):
    search_style = False

    def supports(self, item: MarketItem) -> bool:
        return (item.category or "").lower() in self.rules.auction_fallback_categories

    async def _sold_listings(self, query: str) -> List[Dict[str, Any]]:
        url = f"{self.config.base_url}/search/{quote(query, safe='')}"
        data = await self._get_json(url, params={"page": 1, "type": "sold"})
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            raise ParseError("eBay search returned unexpected payload", source=self.name)
        listings = data.get("results") or data.get("data") or data.get("items") or []
        if not isinstance(listings, list):
            raise ParseError("eBay results is not an array", source=self.name)
        return [listing for listing in listings if isinstance(listing, dict)]

    @staticmethod
    def _price(listing: Dict[str, Any]):
        for key in ("price", "sold_price", "soldPrice"):
            price = to_decimal(listing.get(key))
            if price is not None and price > 0:
                return price
        return None

    async def search(self, item: MarketItem) -> List[SourceObservation]:
        listings = await self._sold_listings(build_search_query(item))
        logger.info(f"[EBAY] {item.name}: {len(listings)} sold listings")

        exact_token = None
        if item.set_code and item.card_number:
            exact_token = f"{item.set_code}-{item.card_number}".lower()

        observations = []
        for listing in listings[: self.rules.max_listings_per_item]:
            price = self._price(listing)
            if price is None:
                continue

            title = listing.get("title") or ""
            listing_id = listing.get("id") or listing.get("itemId")
            observations.append(SourceObservation(
                source=self.name,
                price=price,
                currency="USD",
                event_type="sale",
                source_event_id=str(listing_id) if listing_id else None,
                name=title,
                title=title,
                description=listing.get("description") or listing.get("subtitle"),
                external_id=str(listing_id) if listing_id else None,
                external_url=listing.get("link") or listing.get("url") or listing.get("itemUrl"),
                observed_at=parse_datetime(listing.get("sold_date") or listing.get("soldDate")),
                has_exact_number=bool(exact_token and exact_token in title.lower()),
                raw=listing,
            ))
        return observations

    async def fetch_quote(self, item: MarketItem) -> Optional[PriceQuote]:
        listings = await self._sold_listings(item.name)
        detector = OutlierDetector(self.rules.outlier_terms)

        prices = []
        for listing in listings:
            price = self._price(listing)
            if price is None:
                continue
            if detector.check(listing.get("title"), listing.get("description")).is_outlier:
                continue
            prices.append(price)

        if len(prices) < self.rules.min_auction_samples:
            logger.debug(f"[EBAY] {item.name}: only {len(prices)} usable sales")
            return None

        return PriceQuote(
            source=self.name,
            price_usd=quantize_money(median(prices)),
            sample_count=len(prices),
        )
