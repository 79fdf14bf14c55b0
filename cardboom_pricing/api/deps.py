"""
Shared API dependencies

Jobs open their own per-item sessions, so routes hand them a session factory
rather than a request session. Tests override these with dependency_overrides.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from cardboom_pricing.adapters import AdapterRegistry
from cardboom_pricing.core.config import Settings, settings
from cardboom_pricing.core.database import AsyncSessionLocal, get_db  # noqa: F401


def get_settings() -> Settings:
    return settings


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


def get_adapter_registry() -> Optional[AdapterRegistry]:
    """None -> jobs build the registry from settings with a fresh HTTP client."""
    return None
