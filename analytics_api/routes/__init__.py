"""
API Routes: health plus the analytics routers.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_api.database import get_db
from analytics_api.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(session: AsyncSession = Depends(get_db)):
    database = "connected"
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=database,
    )
