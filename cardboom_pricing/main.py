"""
Cardboom Pricing Engine
FastAPI application entry point

- Pricing job triggers (ingestion, scheduler, aggregation) under /api/pricing
- Review queue admin reads
- ConfigurationError -> HTTP 500 {success: false, error}
- Health endpoint with DB ping
"""
import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from cardboom_pricing import __version__
from cardboom_pricing.api.deps import get_session_factory
from cardboom_pricing.api.routes import aggregation, ingestion, match_review, scheduler
from cardboom_pricing.core.config import settings
from cardboom_pricing.core.exceptions import ConfigurationError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"[CONFIG] {request.url.path}: {exc.to_dict()}")
    return JSONResponse(status_code=500, content={"success": False, "error": exc.message})


app.include_router(ingestion.router, prefix="/api/pricing", tags=["Pricing - Ingestion"])
app.include_router(scheduler.router, prefix="/api/pricing", tags=["Pricing - Scheduler"])
app.include_router(match_review.router, prefix="/api/pricing", tags=["Pricing - Review Queue"])
app.include_router(aggregation.router, prefix="/api/pricing", tags=["Pricing - Aggregation"])


@app.get("/health", tags=["Health"])
async def health_check(session_factory: async_sessionmaker = Depends(get_session_factory)):
    """Liveness with a DB ping. Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
