"""
Pytest configuration and fixtures for the pricing engine tests.
"""
import os
from decimal import Decimal
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set test environment before importing package modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_cardboom.db"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from cardboom_pricing.adapters.base import (  # noqa: E402
    AdapterConfig,
    AdapterRegistry,
    PriceQuote,
    PriceSourceAdapter,
    SourceObservation,
)
from cardboom_pricing.core.config import PricingRules  # noqa: E402
from cardboom_pricing.core.database import Base  # noqa: E402
from cardboom_pricing.core.exceptions import ExternalFetchError  # noqa: E402
import cardboom_pricing.models  # noqa: E402,F401
from cardboom_pricing.models.market_item import MarketItem  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pricing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def rules() -> PricingRules:
    return PricingRules()


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


def make_item(**overrides) -> MarketItem:
    fields = dict(
        name="Charizard",
        category="pokemon",
        set_code="BS",
        card_number="4",
        current_price=Decimal("45.00"),
        views_24h=0,
        is_trending=False,
    )
    fields.update(overrides)
    return MarketItem(**fields)


async def add_items(session_factory, *items: MarketItem) -> List[MarketItem]:
    async with session_factory() as db:
        for item in items:
            db.add(item)
        await db.commit()
    return list(items)


async def load_item(session_factory, item_id: str) -> Optional[MarketItem]:
    async with session_factory() as db:
        return await db.get(MarketItem, item_id)


class FakeAdapter(PriceSourceAdapter):
    """In-memory adapter returning canned observations / quotes."""

    def __init__(
        self,
        name: str,
        observations: Optional[List[SourceObservation]] = None,
        quote: Optional[PriceQuote] = None,
        search_style: bool = False,
        supported: bool = True,
        error: Optional[Exception] = None,
        api_key: str = "test-key",
    ):
        super().__init__(
            AdapterConfig(name=name, base_url=f"https://{name}.test", api_key=api_key),
            client=MagicMock(),
        )
        self.search_style = search_style
        self.observations = observations or []
        self.quote = quote
        self.supported = supported
        self.error = error
        self.search_calls = 0
        self.quote_calls = 0

    def supports(self, item) -> bool:
        return self.supported

    async def search(self, item) -> List[SourceObservation]:
        self.search_calls += 1
        if self.error:
            raise self.error
        return list(self.observations)

    async def fetch_quote(self, item) -> Optional[PriceQuote]:
        self.quote_calls += 1
        if self.error:
            raise self.error
        return self.quote


def make_registry(*adapters: PriceSourceAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return registry


@pytest.fixture
def fetch_error() -> ExternalFetchError:
    return ExternalFetchError("boom", source="test", status_code=503)
