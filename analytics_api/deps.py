"""
Shared FastAPI dependencies: per-process singletons and the admin guard.
"""

import hmac
import logging

from fastapi import Header, HTTPException, Request, status

from analytics_api.config import settings
from analytics_api.services.geolocation import GeoResolver
from analytics_api.services.rate_limiter import RateLimiter

logger = logging.getLogger("analytics.auth")


def get_rate_limiter(request: Request) -> RateLimiter:
    """The limiter built once in ``main.py`` and parked on ``app.state``."""
    return request.app.state.rate_limiter


def get_geo_resolver(request: Request) -> GeoResolver:
    return request.app.state.geo_resolver


def _presented_token(authorization: str | None, x_admin_token: str | None) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return (x_admin_token or "").strip()


async def require_admin(
    authorization: str | None = Header(None),
    x_admin_token: str | None = Header(None),
) -> None:
    """
    Guard for privileged routes.

    Accepts ``Authorization: Bearer <token>`` or ``X-Admin-Token: <token>``.
    With no ``ADMIN_TOKEN`` configured every call is refused.
    """
    expected = settings.admin_token
    presented = _presented_token(authorization, x_admin_token)

    if not expected or not presented or not hmac.compare_digest(
        presented.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Rejected privileged request (token %s)", "present" if presented else "missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
