"""
Price scheduler trigger

POST /api/pricing/scheduler/run
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardboom_pricing.adapters import AdapterRegistry
from cardboom_pricing.api.deps import get_adapter_registry, get_session_factory, get_settings
from cardboom_pricing.core.config import Settings
from cardboom_pricing.jobs.price_scheduler import run_price_scheduler_job
from cardboom_pricing.schemas.scheduler import SchedulerRunRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler")


@router.post("/run")
async def run_scheduler(
    request: SchedulerRunRequest,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    registry: Optional[AdapterRegistry] = Depends(get_adapter_registry),
) -> Dict[str, Any]:
    """
    Run one scheduler batch.

    Returns status 'skipped' with reason 'lease_held' when another run is active.
    """
    return await run_price_scheduler_job(request, settings, session_factory, registry)
