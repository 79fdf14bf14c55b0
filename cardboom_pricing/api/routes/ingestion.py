"""
Price ingestion trigger

POST /api/pricing/ingest
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardboom_pricing.adapters import AdapterRegistry
from cardboom_pricing.api.deps import get_adapter_registry, get_session_factory, get_settings
from cardboom_pricing.core.config import Settings
from cardboom_pricing.jobs.price_ingestion import run_price_ingestion_job
from cardboom_pricing.schemas.ingestion import IngestRequest, IngestResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/ingest", response_model=IngestResponse)
async def ingest_price_events(
    request: IngestRequest,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    registry: Optional[AdapterRegistry] = Depends(get_adapter_registry),
) -> Dict[str, Any]:
    """Ingest price events for catalog items from one source."""
    return await run_price_ingestion_job(request, settings, session_factory, registry)
