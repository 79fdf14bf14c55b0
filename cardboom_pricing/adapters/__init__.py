"""
Price source adapters.

build_adapter_registry() wires every source with its credential from Settings,
the shared HTTP client and the run's SourceGate for that source.
"""
from typing import Optional

from cardboom_pricing.adapters.base import (
    AdapterConfig,
    AdapterRegistry,
    PriceQuote,
    PriceSourceAdapter,
    SourceObservation,
)
from cardboom_pricing.adapters.cardmarket import CARDMARKET_HOST, CardmarketAdapter
from cardboom_pricing.adapters.ebay import EBAY_HOST, EbayAdapter
from cardboom_pricing.adapters.pricecharting import PriceChartingAdapter
from cardboom_pricing.core.config import PricingRules, Settings
from cardboom_pricing.core.http_client import ResilientHTTPClient, SourceGateRegistry

CARDMARKET_CONFIG = AdapterConfig(
    name="cardmarket",
    base_url=f"https://{CARDMARKET_HOST}",
    api_key_setting="CARDMARKET_RAPIDAPI_KEY",
    rapidapi_host=CARDMARKET_HOST,
)

PRICECHARTING_CONFIG = AdapterConfig(
    name="pricecharting",
    base_url="https://www.pricecharting.com/api",
    api_key_setting="PRICECHARTING_API_TOKEN",
)

EBAY_CONFIG = AdapterConfig(
    name="ebay",
    base_url=f"https://{EBAY_HOST}",
    api_key_setting="EBAY_RAPIDAPI_KEY",
    rapidapi_host=EBAY_HOST,
)


def build_adapter_registry(
    settings: Settings,
    client: ResilientHTTPClient,
    rules: Optional[PricingRules] = None,
    gates: Optional[SourceGateRegistry] = None,
) -> AdapterRegistry:
    """Create the registry with all three external sources."""
    rules = rules or PricingRules.from_settings(settings)
    gates = gates or SourceGateRegistry()
    registry = AdapterRegistry()

    for config, adapter_class, key in (
        (CARDMARKET_CONFIG, CardmarketAdapter, settings.CARDMARKET_RAPIDAPI_KEY),
        (PRICECHARTING_CONFIG, PriceChartingAdapter, settings.PRICECHARTING_API_TOKEN),
        (EBAY_CONFIG, EbayAdapter, settings.EBAY_RAPIDAPI_KEY),
    ):
        source_config = AdapterConfig(
            name=config.name,
            base_url=config.base_url,
            api_key=key,
            api_key_setting=config.api_key_setting,
            rapidapi_host=config.rapidapi_host,
        )
        registry.register(adapter_class(source_config, client, rules, gates.get(config.name)))

    return registry


__all__ = [
    "AdapterConfig",
    "AdapterRegistry",
    "PriceQuote",
    "PriceSourceAdapter",
    "SourceObservation",
    "CardmarketAdapter",
    "PriceChartingAdapter",
    "EbayAdapter",
    "CARDMARKET_CONFIG",
    "PRICECHARTING_CONFIG",
    "EBAY_CONFIG",
    "build_adapter_registry",
]
