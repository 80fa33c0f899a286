"""
Visitor Analytics: public ingest route for tracker beacons.

Errors keep the ``{"error": ...}`` body the tracker protocol expects rather
than FastAPI's ``{"detail": ...}``.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_api.config import settings
from analytics_api.database import get_db
from analytics_api.deps import get_geo_resolver, get_rate_limiter
from analytics_api.schemas import TrackPayload, TrackResponse
from analytics_api.services.geolocation import GeoResolver
from analytics_api.services.ingestion import CREATED, client_ip_from_headers, ingest_session
from analytics_api.services.rate_limiter import RateLimiter

logger = logging.getLogger("analytics.ingest")
router = APIRouter(prefix="/analytics", tags=["analytics"])


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


@router.post("/track", response_model=TrackResponse, response_model_exclude_none=True)
async def track(
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    client_ip = client_ip_from_headers(
        request.headers,
        request.client.host if request.client else None,
        trust_forwarded=settings.trust_forwarded_headers,
    )

    decision = limiter.check(client_ip)
    if not decision.allowed:
        return _error(429, "Rate limit exceeded", {"Retry-After": str(decision.retry_after)})

    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Invalid JSON body")
    if not isinstance(body, dict):
        return _error(400, "Invalid JSON body")

    if not str(body.get("sessionId") or "").strip():
        return _error(400, "Session ID is required")

    try:
        payload = TrackPayload.model_validate(body)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return _error(400, f"Invalid fields: {fields}")

    try:
        outcome = await ingest_session(db, payload, client_ip, resolver)
    except Exception as e:
        logger.error("Failed to record session %s: %s", payload.session_id, e)
        return _error(500, "Internal server error")

    if outcome == CREATED:
        return TrackResponse(created=True)
    return TrackResponse(updated=True)
