"""
Cardmarket Adapter (RapidAPI cardmarket-api-tcg)

Ingestion: card search by name per game, first few candidates returned as EUR
trend observations with a structured card number.
Scheduler: direct card lookup by the item's cardmarket_id, converted to USD.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from cardboom_pricing.adapters.base import PriceQuote, PriceSourceAdapter, SourceObservation
from cardboom_pricing.core.exceptions import ParseError
from cardboom_pricing.core.utils import quantize_money, to_decimal
from cardboom_pricing.models.market_item import MarketItem

logger = logging.getLogger(__name__)

CARDMARKET_HOST = "cardmarket-api-tcg.p.rapidapi.com"

# Price fields in order of preference
SEARCH_PRICE_FIELDS = ("averageSellPrice", "trendPrice", "priceEUR", "lowestPrice")
QUOTE_PRICE_FIELDS = ("averageSellPrice", "trendPrice", "lowestPrice")


def _first_price(card: Dict[str, Any], fields) -> Optional[Decimal]:
    for key in fields:
        price = to_decimal(card.get(key))
        if price is not None and price > 0:
            return price
    return None


def _same_number(external, internal) -> bool:
    if external is None or internal is None:
        return False
    ext, own = str(external).strip(), str(internal).strip()
    return bool(ext) and ext == own


class CardmarketAdapter(PriceSourceAdapter):
    search_style = True

    def game_for(self, item: MarketItem) -> Optional[str]:
        return self.rules.cardmarket_games.get((item.category or "").lower())

    def supports(self, item: MarketItem) -> bool:
        category = (item.category or "").lower()
        return (
            category in self.rules.scheduler_cardmarket_categories
            and bool(item.cardmarket_id)
            and self.game_for(item) is not None
        )

    def _extract_cards(self, data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            raise ParseError("Cardmarket search returned unexpected payload", source=self.name)
        cards = data.get("data") or data.get("cards") or data.get("products") or []
        if not isinstance(cards, list):
            raise ParseError("Cardmarket card list is not an array", source=self.name)
        return cards

    async def search(self, item: MarketItem) -> List[SourceObservation]:
        game = self.game_for(item)
        if not game:
            logger.debug(f"[CARDMARKET] No game mapping for category {item.category}")
            return []

        url = f"{self.config.base_url}/{game}/cards"
        data = await self._get_json(url, params={"search": item.name, "page": 1})
        cards = self._extract_cards(data)
        logger.info(f"[CARDMARKET] {item.name}: {len(cards)} cards found")

        observations = []
        for card in cards[: self.rules.max_search_candidates]:
            if not isinstance(card, dict):
                continue
            price = _first_price(card, SEARCH_PRICE_FIELDS)
            if price is None:
                continue

            card_id = card.get("id")
            number = card.get("number") or card.get("collector_number")
            observations.append(SourceObservation(
                source=self.name,
                price=price,
                currency="EUR",
                event_type="trend",
                source_event_id=f"cm_{card_id}" if card_id is not None else None,
                name=card.get("name") or "",
                title=card.get("name"),
                external_id=str(card_id) if card_id is not None else None,
                external_url=card.get("url")
                or (f"https://www.cardmarket.com/en/{game}/Cards/{card_id}" if card_id is not None else None),
                has_exact_number=_same_number(number, item.card_number),
                raw=card,
            ))
        return observations

    async def fetch_quote(self, item: MarketItem) -> Optional[PriceQuote]:
        game = self.game_for(item)
        url = f"{self.config.base_url}/{game}/cards/{quote(str(item.cardmarket_id), safe='')}"
        data = await self._get_json(url)

        card = data.get("data") if isinstance(data, dict) and isinstance(data.get("data"), dict) else data
        if not isinstance(card, dict):
            raise ParseError("Cardmarket card lookup returned unexpected payload", source=self.name)

        price_eur = _first_price(card, QUOTE_PRICE_FIELDS)
        if price_eur is None:
            return None

        return PriceQuote(
            source=self.name,
            price_usd=quantize_money(price_eur * self.rules.eur_usd_rate),
            external_id=str(item.cardmarket_id),
            raw=card,
        )
