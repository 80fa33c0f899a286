"""
Session ingestion: one tracker beacon → one Session Store write.

The first beacon for a ``sessionId`` inserts the row with its dimensions
(normalized to the closed vocabularies) and a geolocated country. Every
later beacon touches only the metric columns, through a single conditional
UPDATE so concurrent beacons for the same session never lose an increment
to a read-modify-write race.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_api.models.visitor_session import VisitorSession
from analytics_api.schemas import TrackPayload
from analytics_api.schemas.dimensions import (
    Browser,
    DeviceType,
    OperatingSystem,
    ReferrerCategory,
)
from analytics_api.services.geolocation import GeoResolver
from analytics_api.tracker.useragent import categorize_referrer

logger = logging.getLogger("analytics.ingest")

CREATED = "created"
UPDATED = "updated"


def client_ip_from_headers(headers, peer: str | None = None, trust_forwarded: bool = True) -> str:
    """
    First ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the socket peer.

    Forwarded headers are client-controlled unless a proxy in front of the
    service overwrites them; with ``trust_forwarded=False`` only the socket
    peer is used.
    """
    if trust_forwarded:
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = (headers.get("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
    return peer or "unknown"


def _referrer_category(payload: TrackPayload) -> str:
    if payload.referrer_category is None or not payload.referrer_category.strip():
        return categorize_referrer(payload.referrer).value
    return ReferrerCategory.parse(payload.referrer_category).value


def build_session_row(payload: TrackPayload, country: str, now: datetime) -> VisitorSession:
    """New Session Store row with defaults applied and dimensions normalized."""
    entry_page = payload.entry_page or "/"
    page_views = payload.page_views or 1
    is_bounce = payload.is_bounce if payload.is_bounce is not None else True

    return VisitorSession(
        session_id=payload.session_id,
        visitor_id=payload.visitor_id or "anonymous",
        country=country,
        device_type=DeviceType.parse(payload.device_type).value,
        browser=Browser.parse(payload.browser).value,
        browser_version=payload.browser_version or "",
        os=OperatingSystem.parse(payload.os).value,
        os_version=payload.os_version or "",
        referrer=payload.referrer or "",
        referrer_category=_referrer_category(payload),
        entry_page=entry_page,
        exit_page=payload.exit_page or entry_page,
        page_views=page_views,
        session_duration=payload.session_duration or 0,
        is_bounce=is_bounce,
        last_activity=now,
        created_at=now,
    )


def build_metrics_update(payload: TrackPayload, now: datetime):
    """
    Conditional UPDATE for an existing session.

    Every right-hand side refers to the stored values, so the statement is
    evaluated atomically by the database:

    - page_views: max(stored, incoming), or stored + 1 when not sent
    - session_duration: max(stored, incoming), or unchanged
    - exit_page: incoming, or unchanged
    - is_bounce: explicit flag, or resulting page_views <= 1
    """
    col = VisitorSession.__table__.c

    if payload.page_views is not None:
        page_views = case(
            (col.page_views < payload.page_views, payload.page_views),
            else_=col.page_views,
        )
    else:
        page_views = col.page_views + 1

    values = {
        "page_views": page_views,
        "last_activity": now,
    }
    if payload.session_duration is not None:
        values["session_duration"] = case(
            (col.session_duration < payload.session_duration, payload.session_duration),
            else_=col.session_duration,
        )
    if payload.exit_page:
        values["exit_page"] = payload.exit_page
    if payload.is_bounce is not None:
        values["is_bounce"] = payload.is_bounce
    else:
        values["is_bounce"] = page_views <= 1

    return (
        update(VisitorSession)
        .where(VisitorSession.session_id == payload.session_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def ingest_session(
    db: AsyncSession,
    payload: TrackPayload,
    client_ip: str,
    resolver: GeoResolver,
    now: datetime | None = None,
) -> str:
    """
    Create or update the Session Store row for ``payload.session_id``.

    Returns ``"created"`` or ``"updated"``. Persistence errors propagate.
    """
    now = now or datetime.now(timezone.utc)

    result = await db.execute(build_metrics_update(payload, now))
    if result.rowcount:
        await db.commit()
        return UPDATED

    # No row yet: this is the first beacon we have seen for the session.
    # End the write transaction before the lookup so no lock is held across it.
    await db.rollback()
    country = await resolver.resolve(client_ip)
    db.add(build_session_row(payload, country, now))
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent first beacon won the unique-key race; apply ours as an update.
        await db.rollback()
        logger.info("Session %s created concurrently, applying as update", payload.session_id)
        await db.execute(build_metrics_update(payload, now))
        await db.commit()
        return UPDATED

    logger.debug("New session %s (%s)", payload.session_id, country)
    return CREATED
