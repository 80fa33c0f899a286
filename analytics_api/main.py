"""
FastAPI Application: entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analytics_api.config import settings
from analytics_api.database import close_db, init_db
from analytics_api.migrations import run_migrations
from analytics_api.routes import router
from analytics_api.routes.aggregate import router as aggregate_router
from analytics_api.routes.tracking import router as tracking_router
from analytics_api.routes.visitors import router as visitors_router
from analytics_api.services.aggregator import periodic_aggregation
from analytics_api.services.geolocation import GeoResolver
from analytics_api.services.rate_limiter import RateLimiter, periodic_sweep

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# One limiter per process; counters are not shared across workers.
rate_limiter = RateLimiter(
    limit=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)
geo_resolver = GeoResolver(
    lookup_url=settings.geo_lookup_url,
    timeout_seconds=settings.geo_timeout_seconds,
)


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting Visitor Analytics API v%s", VERSION)
    await init_db()
    await run_migrations()
    logger.info("✅ Database ready")

    if not settings.admin_token:
        logger.warning("⚠️  ADMIN_TOKEN not set: aggregate and report routes will refuse every call")

    tasks = [
        asyncio.create_task(
            periodic_sweep(rate_limiter, interval=settings.rate_limit_sweep_interval)
        )
    ]
    if settings.aggregation_interval_seconds > 0:
        logger.info("⏱️  In-process aggregation every %ds", settings.aggregation_interval_seconds)
        tasks.append(
            asyncio.create_task(periodic_aggregation(settings.aggregation_interval_seconds))
        )
    else:
        logger.info("ℹ️ In-process aggregation disabled (external scheduler expected)")

    yield

    # Shutdown
    for task in tasks:
        await _stop(task)
    await close_db()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Visitor Analytics API",
    description=(
        "Privacy-preserving visitor analytics: session ingestion, hourly "
        "aggregation with raw-data anonymization, and merged reporting."
    ),
    version=VERSION,
    lifespan=lifespan,
)
app.state.rate_limiter = rate_limiter
app.state.geo_resolver = geo_resolver

# CORS: the tracker posts from the storefront origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
app.include_router(tracking_router, prefix="/api/v1")
app.include_router(aggregate_router, prefix="/api/v1")
app.include_router(visitors_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Visitor Analytics API",
        "version": VERSION,
        "docs": "/docs",
    }
