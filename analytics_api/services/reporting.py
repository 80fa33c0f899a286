"""
Visitor report: merges the hourly stats with the not-yet-aggregated tail.

Visitors are summed across both sources without deduplication: a visitor
seen in an aggregated hour and again in a raw session is counted twice.
"""

import logging
import math
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_api.config import settings
from analytics_api.models.visitor_session import VisitorSession
from analytics_api.models.visitor_stat import VisitorStat
from analytics_api.schemas import (
    BrowserCount,
    CountryCount,
    DateRange,
    DeviceCount,
    OsCount,
    ReferrerCount,
    ReportSummary,
    TimeRange,
    VisitorReport,
)

logger = logging.getLogger("analytics.report")

_PRESET_DAYS = {
    TimeRange.TODAY: 0,
    TimeRange.LAST_7_DAYS: 7,
    TimeRange.LAST_30_DAYS: 30,
}


class ReportRangeError(ValueError):
    """Raised for a date range the report cannot be built for."""


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, AttributeError):
        raise ReportRangeError(f"{name} must be a YYYY-MM-DD date") from None


def resolve_date_range(
    time_range: str | None,
    start_date: str | None = None,
    end_date: str | None = None,
    today: date | None = None,
) -> tuple[date, date, TimeRange]:
    """
    Turn the report query parameters into an inclusive UTC date range.

    Presets ignore any explicit dates. ``custom`` needs both dates. With no
    ``time_range`` at all, two explicit dates mean custom and anything else
    falls back to the last seven days.
    """
    if not time_range:
        time_range = TimeRange.CUSTOM.value if start_date and end_date else TimeRange.LAST_7_DAYS.value
    try:
        preset = TimeRange(time_range)
    except ValueError:
        raise ReportRangeError(
            "timeRange must be one of: " + ", ".join(t.value for t in TimeRange)
        )

    if preset in _PRESET_DAYS:
        today = today or datetime.now(timezone.utc).date()
        return today - timedelta(days=_PRESET_DAYS[preset]), today, preset

    if not start_date or not end_date:
        raise ReportRangeError("Start date and end date are required")
    start = _parse_date(start_date, "startDate")
    end = _parse_date(end_date, "endDate")
    if start > end:
        raise ReportRangeError("startDate must not be after endDate")
    return start, end, preset


def _ranked(counter: Counter, limit: int | None = None) -> list[tuple[str, int]]:
    """Descending by count, ties broken by value so output is deterministic."""
    items = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
    return items[:limit] if limit is not None else items


async def build_report(
    db: AsyncSession,
    start: date,
    end: date,
    time_range: TimeRange = TimeRange.CUSTOM,
    country_limit: int | None = None,
) -> VisitorReport:
    country_limit = settings.report_country_limit if country_limit is None else country_limit

    stats = (
        await db.execute(
            select(VisitorStat).where(VisitorStat.date >= start, VisitorStat.date <= end)
        )
    ).scalars().all()

    window_start = datetime.combine(start, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    recent = (
        await db.execute(
            select(VisitorSession).where(
                VisitorSession.created_at >= window_start,
                VisitorSession.created_at < window_end,
            )
        )
    ).scalars().all()

    total_visitors = 0
    total_sessions = 0
    total_pageviews = 0
    bounced = 0
    total_duration = 0.0

    countries: Counter = Counter()
    devices: Counter = Counter()
    browsers: Counter = Counter()
    systems: Counter = Counter()
    referrers: Counter = Counter()

    # ── aggregated hours ──
    for stat in stats:
        sessions = stat.total_sessions or 0
        total_visitors += stat.total_visitors or 0
        total_sessions += sessions
        total_pageviews += stat.total_pageviews or 0
        bounced += stat.bounced_sessions or 0
        total_duration += stat.total_duration

        countries[stat.country] += sessions
        devices[stat.device_type] += sessions
        browsers[stat.browser] += sessions
        systems[stat.os] += sessions
        referrers[stat.referrer_category] += sessions

    # ── raw tail ──
    visitors = set()
    for s in recent:
        visitors.add(s.visitor_id)
        total_sessions += 1
        total_pageviews += s.page_views or 0
        bounced += 1 if s.is_bounce else 0
        total_duration += s.session_duration or 0

        countries[s.country] += 1
        devices[s.device_type] += 1
        browsers[s.browser] += 1
        systems[s.os] += 1
        referrers[s.referrer_category] += 1

    total_visitors += len(visitors)

    bounce_rate = round(bounced / total_sessions * 100, 2) if total_sessions else 0.0
    # stored averages are floats; round away representation error before flooring
    avg_duration = math.floor(round(total_duration / total_sessions, 6)) if total_sessions else 0

    logger.debug(
        "Report %s..%s: %d stats rows, %d raw sessions", start, end, len(stats), len(recent)
    )

    return VisitorReport(
        summary=ReportSummary(
            total_visitors=total_visitors,
            total_sessions=total_sessions,
            total_page_views=total_pageviews,
            bounce_rate=bounce_rate,
            avg_session_duration=avg_duration,
        ),
        top_countries=[CountryCount(country=k, sessions=v) for k, v in _ranked(countries, country_limit)],
        device_types=[DeviceCount(device=k, sessions=v) for k, v in _ranked(devices)],
        browsers=[BrowserCount(browser=k, sessions=v) for k, v in _ranked(browsers)],
        operating_systems=[OsCount(os=k, sessions=v) for k, v in _ranked(systems)],
        referrer_sources=[ReferrerCount(referrer=k, sessions=v) for k, v in _ranked(referrers)],
        date_range=DateRange(
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            time_range=time_range,
        ),
    )
