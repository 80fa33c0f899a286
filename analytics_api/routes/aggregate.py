"""
Visitor Analytics: aggregation trigger and status (admin).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics_api.database import get_session_factory
from analytics_api.deps import require_admin
from analytics_api.schemas import AggregationResult, AggregationStatus
from analytics_api.services.aggregator import get_aggregation_status, run_aggregation

logger = logging.getLogger("analytics.aggregator")
router = APIRouter(
    prefix="/analytics/aggregate",
    tags=["analytics"],
    dependencies=[Depends(require_admin)],
)


@router.post("", response_model=AggregationResult, response_model_exclude={"skipped"})
async def trigger_aggregation(factory: async_sessionmaker = Depends(get_session_factory)):
    """Roll up raw sessions older than the cutoff and delete them."""
    try:
        result = await run_aggregation(session_factory=factory)
    except Exception as e:
        logger.error("Aggregation run failed: %s", e)
        raise HTTPException(status_code=500, detail="Aggregation failed")

    if result.skipped:
        return JSONResponse(status_code=409, content=result.model_dump(by_alias=True))
    return result


@router.get("", response_model=AggregationStatus)
async def aggregation_status(factory: async_sessionmaker = Depends(get_session_factory)):
    try:
        return await get_aggregation_status(session_factory=factory)
    except Exception as e:
        logger.error("Aggregation status failed: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
