"""
Visitor Analytics: visitor report (admin).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_api.database import get_db
from analytics_api.deps import require_admin
from analytics_api.schemas import VisitorReport
from analytics_api.services.reporting import ReportRangeError, build_report, resolve_date_range

logger = logging.getLogger("analytics.report")
router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(require_admin)])


@router.get("/visitors", response_model=VisitorReport)
async def visitor_report(
    time_range: str | None = Query(None, alias="timeRange"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
):
    try:
        start, end, preset = resolve_date_range(time_range, start_date, end_date)
    except ReportRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await build_report(db, start, end, preset)
    except Exception as e:
        logger.error("Visitor report %s..%s failed: %s", start, end, e)
        raise HTTPException(status_code=500, detail="Failed to fetch visitor stats")
