"""
Price Source Adapter Registry v1.0.0

- Abstract PriceSourceAdapter interface for every external price source
- AdapterRegistry for discovery by source name
- Normalized SourceObservation / PriceQuote records, so the jobs never touch
  a source's raw JSON shape

Each source has its own adapter responsible for:
- Authentication (API key headers / query token)
- Request building and response shape quirks
- Normalization into SourceObservation (ingestion) and PriceQuote (scheduler)

All network traffic goes through ResilientHTTPClient, wrapped in the source's
SourceGate so that concurrency and politeness delay are enforced per source.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from cardboom_pricing.core.config import PricingRules
from cardboom_pricing.core.exceptions import ConfigurationError, ExternalFetchError, ParseError
from cardboom_pricing.core.http_client import ResilientHTTPClient, SourceGate
from cardboom_pricing.models.market_item import MarketItem

logger = logging.getLogger(__name__)


@dataclass
class AdapterConfig:
    """Configuration for a price source adapter."""
    name: str
    base_url: str
    api_key: str = ""
    api_key_setting: Optional[str] = None  # Settings field name, for error messages
    rapidapi_host: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceObservation:
    """One normalized pricing observation from a source."""
    source: str
    price: Decimal
    currency: str = "USD"
    event_type: str = "sale"  # 'sale' | 'trend'
    source_event_id: Optional[str] = None  # None -> ingestion generates a fallback id
    name: str = ""
    title: Optional[str] = None
    description: Optional[str] = None
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    observed_at: Optional[datetime] = None
    has_exact_number: bool = False
    grades: Dict[str, Decimal] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PriceQuote:
    """A single usable price for an item, as picked by a source (scheduler path)."""
    source: str
    price_usd: Decimal
    external_id: Optional[str] = None
    sample_count: int = 1
    grades: Dict[str, Decimal] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)


class PriceSourceAdapter(ABC):
    """
    Abstract base class for price source adapters.

    search_style adapters (product/card search) return several candidates of
    which ingestion keeps only the best-scoring one; listing-style adapters
    return independent sales that are all kept.
    """

    search_style: bool = False

    def __init__(
        self,
        config: AdapterConfig,
        client: ResilientHTTPClient,
        rules: Optional[PricingRules] = None,
        gate: Optional[SourceGate] = None,
    ):
        self.config = config
        self.client = client
        self.rules = rules or PricingRules()
        self.gate = gate or SourceGate(config.name)
        self._success_count = 0
        self._error_count = 0

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def require_configured(self) -> None:
        """Raise ConfigurationError when the source's credential is missing."""
        if not self.is_configured:
            setting = self.config.api_key_setting
            raise ConfigurationError(f"{setting or self.name} not configured", setting=setting)

    def supports(self, item: MarketItem) -> bool:
        """Whether the scheduler should try this source for the item."""
        return True

    @abstractmethod
    async def search(self, item: MarketItem) -> List[SourceObservation]:
        """
        Fetch raw observations for an item (ingestion path).

        Raises:
            ExternalFetchError / ParseError
        """
        pass

    @abstractmethod
    async def fetch_quote(self, item: MarketItem) -> Optional[PriceQuote]:
        """
        Fetch one usable USD price for an item (scheduler path).

        Returns None when the source has no usable price.
        """
        pass

    def _headers(self) -> Dict[str, str]:
        if self.config.rapidapi_host:
            return {
                "X-RapidAPI-Key": self.config.api_key,
                "X-RapidAPI-Host": self.config.rapidapi_host,
            }
        return {}

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document through the source gate.

        Raises:
            ExternalFetchError: transport failure or non-success status
            ParseError: body is not JSON
        """
        async with self.gate:
            try:
                response = await self.client.get(
                    url, params=params, headers=self._headers(), source=self.name
                )
            except ExternalFetchError:
                self._error_count += 1
                raise

        if response.status_code != 200:
            self._error_count += 1
            logger.warning(f"[{self.name.upper()}] {url} returned {response.status_code}")
            raise ExternalFetchError(
                f"{self.name} returned {response.status_code}",
                source=self.name,
                status_code=response.status_code,
                details={"body": response.text[:200]},
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            self._error_count += 1
            raise ParseError(f"{self.name} returned invalid JSON: {e}", source=self.name) from e

        self._success_count += 1
        return data

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "configured": self.is_configured,
            "calls": self.gate.calls,
            "success_count": self._success_count,
            "error_count": self._error_count,
        }


class AdapterRegistry:
    """Registry of price source adapters keyed by source name."""

    def __init__(self):
        self._adapters: Dict[str, PriceSourceAdapter] = {}

    def register(self, adapter: PriceSourceAdapter) -> PriceSourceAdapter:
        if adapter.name in self._adapters:
            logger.warning(f"Adapter '{adapter.name}' already registered, replacing")
        self._adapters[adapter.name] = adapter
        return adapter

    def get(self, name: str) -> Optional[PriceSourceAdapter]:
        return self._adapters.get(name)

    def list_adapters(self) -> List[str]:
        return list(self._adapters.keys())

    def get_stats(self) -> List[Dict[str, Any]]:
        return [adapter.get_stats() for adapter in self._adapters.values()]
