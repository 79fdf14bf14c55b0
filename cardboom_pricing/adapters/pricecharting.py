"""
PriceCharting Adapter

API reference: https://www.pricecharting.com/api-documentation
- /api/products?t=TOKEN&q=QUERY   product search
- /api/product?t=TOKEN&id=ID      single product

Prices come back in integer cents; tier fields map to catalog grades:

    loose-price        -> raw
    cib-price          -> psa7
    new-price          -> psa8
    graded-price       -> psa9
    manual-only-price  -> psa10
    bgs-10-price       -> bgs10
    condition-17-price -> cgc10
"""
import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from cardboom_pricing.adapters.base import PriceQuote, PriceSourceAdapter, SourceObservation
from cardboom_pricing.core.exceptions import ExternalFetchError, ParseError
from cardboom_pricing.core.utils import cents_to_dollars
from cardboom_pricing.models.market_item import MarketItem

logger = logging.getLogger(__name__)

GRADE_FIELD_MAP = {
    "loose-price": "raw",
    "cib-price": "psa7",
    "new-price": "psa8",
    "graded-price": "psa9",
    "manual-only-price": "psa10",
    "bgs-10-price": "bgs10",
    "condition-17-price": "cgc10",
}

# Price used for the catalog, in order of preference
SEARCH_PRICE_FIELDS = ("loose-price", "graded-price")
PRODUCT_PRICE_FIELDS = ("loose-price", "graded-price", "cib-price")

_CARD_NUMBER = re.compile(r"#\s*([A-Za-z0-9\-]+)")
_PC_ID = re.compile(r"^\d+$")


def extract_grades(product: Dict[str, Any]) -> Dict[str, Decimal]:
    """Map PriceCharting tier fields (cents) to grade -> dollars."""
    grades = {}
    for field_name, grade in GRADE_FIELD_MAP.items():
        price = cents_to_dollars(product.get(field_name))
        if price is not None:
            grades[grade] = price
    return grades


def parse_card_number(product_name: Optional[str]) -> Optional[str]:
    """'Charizard #4' -> '4'"""
    if not product_name:
        return None
    match = _CARD_NUMBER.search(product_name)
    return match.group(1) if match else None


def _normalize_number(value) -> str:
    text = str(value).strip().lower()
    return text.lstrip("0") or text


def pricecharting_id(item: MarketItem) -> Optional[str]:
    """Numeric product id from external_id ('pc:12345' or '12345')."""
    raw = (item.external_id or "").strip()
    if raw.startswith("pc:"):
        raw = raw[3:]
    return raw if _PC_ID.match(raw) else None


class PriceChartingAdapter(PriceSourceAdapter):
    search_style = True

    def _params(self, **extra) -> Dict[str, Any]:
        return {"t": self.config.api_key, **extra}

    def _check_status(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ParseError("PriceCharting returned unexpected payload", source=self.name)
        if data.get("status") == "error":
            raise ExternalFetchError(
                f"PriceCharting error: {data.get('error-message', 'unknown')}",
                source=self.name,
            )
        return data

    def _first_price(self, product: Dict[str, Any], fields) -> Optional[Decimal]:
        for field_name in fields:
            price = cents_to_dollars(product.get(field_name))
            if price is not None:
                return price
        return None

    async def search(self, item: MarketItem) -> List[SourceObservation]:
        data = self._check_status(
            await self._get_json(f"{self.config.base_url}/products", params=self._params(q=item.name))
        )
        products = data.get("products") or []
        if not isinstance(products, list):
            raise ParseError("PriceCharting products is not an array", source=self.name)

        observations = []
        for product in products[: self.rules.max_search_candidates]:
            price = self._first_price(product, SEARCH_PRICE_FIELDS)
            if price is None:
                continue

            product_id = product.get("id")
            product_name = product.get("product-name") or ""
            number = parse_card_number(product_name)
            exact = bool(
                number and item.card_number
                and _normalize_number(number) == _normalize_number(item.card_number)
            )
            observations.append(SourceObservation(
                source=self.name,
                price=price,
                currency="USD",
                event_type="trend",
                source_event_id=f"pc_{product_id}" if product_id is not None else None,
                name=product_name,
                title=product_name,
                description=product.get("console-name"),
                external_id=str(product_id) if product_id is not None else None,
                has_exact_number=exact,
                grades=extract_grades(product),
                raw=product,
            ))
        return observations

    async def fetch_quote(self, item: MarketItem) -> Optional[PriceQuote]:
        pc_id = pricecharting_id(item)

        if pc_id:
            product = self._check_status(
                await self._get_json(f"{self.config.base_url}/product", params=self._params(id=pc_id))
            )
            price = self._first_price(product, PRODUCT_PRICE_FIELDS)
        else:
            data = self._check_status(
                await self._get_json(
                    f"{self.config.base_url}/products", params=self._params(q=item.name, limit=1)
                )
            )
            products = data.get("products") or []
            if not products:
                return None
            product = products[0]
            price = self._first_price(product, SEARCH_PRICE_FIELDS)

        if price is None:
            return None

        return PriceQuote(
            source=self.name,
            price_usd=price,
            external_id=str(product.get("id") or pc_id or ""),
            grades=extract_grades(product),
            raw=product,
        )
