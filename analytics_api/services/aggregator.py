"""
Visitor Aggregator: raw sessions → hourly dimensional stats.

Every run (triggered by the admin endpoint, an external scheduler, or the
optional in-process loop) rolls up raw sessions older than the cutoff:

1. Claim the ``visitor-aggregation`` lease so runs never overlap.
2. Select every session created before ``now - cutoff``.
3. Group by (date, hour, country, device, browser, os, referrer category).
4. Renew the lease; stop the run if another runner has taken it.
5. Per group, in ONE transaction: delete the group's sessions, then insert
   or merge the stats row. If fewer rows were deleted than selected, the
   group is rolled back. Upsert and deletion commit or roll back together,
   so a session is deleted if and only if it was counted.

A failing group is rolled back and logged; its sessions stay put and are
picked up by the next run. Other groups carry on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics_api.config import settings
from analytics_api.models.job_lease import JobLease
from analytics_api.models.visitor_session import VisitorSession
from analytics_api.models.visitor_stat import VisitorStat
from analytics_api.schemas import AggregationResult, AggregationStatus

logger = logging.getLogger("analytics.aggregator")

# ── tunables ──
LEASE_NAME = "visitor-aggregation"
DELETE_CHUNK = 500


class GroupChangedError(RuntimeError):
    """A group's sessions changed between selection and deletion."""


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────
# grouping
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GroupKey:
    date: date
    hour: int
    country: str
    device_type: str
    browser: str
    os: str
    referrer_category: str

    @classmethod
    def for_session(cls, s: VisitorSession) -> "GroupKey":
        created = as_utc(s.created_at)
        return cls(
            date=created.date(),
            hour=created.hour,
            country=s.country,
            device_type=s.device_type,
            browser=s.browser,
            os=s.os,
            referrer_category=s.referrer_category,
        )


@dataclass
class GroupTotals:
    row_ids: list[str] = field(default_factory=list)
    visitor_ids: set[str] = field(default_factory=set)
    sessions: int = 0
    pageviews: int = 0
    bounced: int = 0
    duration: int = 0

    def add(self, s: VisitorSession) -> None:
        self.row_ids.append(s.id)
        self.visitor_ids.add(s.visitor_id)
        self.sessions += 1
        self.pageviews += s.page_views or 0
        self.bounced += 1 if s.is_bounce else 0
        self.duration += s.session_duration or 0

    @property
    def avg_duration(self) -> float:
        return self.duration / self.sessions if self.sessions else 0.0


def group_sessions(sessions) -> dict[GroupKey, GroupTotals]:
    groups: dict[GroupKey, GroupTotals] = {}
    for s in sessions:
        groups.setdefault(GroupKey.for_session(s), GroupTotals()).add(s)
    return groups


def merge_average(old_avg: float, old_sessions: int, add_duration: float, add_sessions: int) -> float:
    """Session-weighted mean of an existing average and a new batch's total duration."""
    total = old_sessions + add_sessions
    if total <= 0:
        return 0.0
    return (old_avg * old_sessions + add_duration) / total


# ─────────────────────────────────────────────────────────────────────
# lease
# ─────────────────────────────────────────────────────────────────────

async def acquire_lease(
    factory: async_sessionmaker,
    holder: str,
    now: datetime,
    ttl_seconds: int,
    name: str = LEASE_NAME,
) -> bool:
    """Claim ``name`` until ``now + ttl``. False if someone else holds an unexpired lease."""
    expires_at = now + timedelta(seconds=ttl_seconds)
    async with factory() as session:
        # Take over an expired lease in one conditional statement.
        result = await session.execute(
            update(JobLease)
            .where(JobLease.name == name, JobLease.expires_at <= now)
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            await session.commit()
            return True

        existing = await session.get(JobLease, name)
        if existing is not None:
            logger.info(
                "⏭️  Lease %s held by %s until %s", name, existing.holder, existing.expires_at
            )
            return False

        session.add(JobLease(name=name, holder=holder, acquired_at=now, expires_at=expires_at))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info("⏭️  Lease %s claimed concurrently", name)
            return False
    return True


async def renew_lease(
    factory: async_sessionmaker,
    holder: str,
    ttl_seconds: int,
    name: str = LEASE_NAME,
) -> bool:
    """Push our lease out to ``utcnow + ttl``. False once another runner has taken it."""
    async with factory() as session:
        result = await session.execute(
            update(JobLease)
            .where(JobLease.name == name, JobLease.holder == holder)
            .values(expires_at=_utcnow() + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return bool(result.rowcount)


async def release_lease(factory: async_sessionmaker, holder: str, name: str = LEASE_NAME) -> None:
    async with factory() as session:
        await session.execute(
            delete(JobLease).where(JobLease.name == name, JobLease.holder == holder)
        )
        await session.commit()


# ─────────────────────────────────────────────────────────────────────
# core
# ─────────────────────────────────────────────────────────────────────

async def _fold_group(factory: async_sessionmaker, key: GroupKey, totals: GroupTotals) -> tuple[bool, int]:
    """
    Upsert one stats row and delete its source sessions in a single transaction.

    Returns ``(inserted, deleted_rows)``. Raises on failure after rolling back.
    """
    async with factory() as session:
        try:
            deleted = 0
            for i in range(0, len(totals.row_ids), DELETE_CHUNK):
                chunk = totals.row_ids[i:i + DELETE_CHUNK]
                result = await session.execute(
                    delete(VisitorSession)
                    .where(VisitorSession.id.in_(chunk))
                    .execution_options(synchronize_session=False)
                )
                deleted += result.rowcount or 0

            if deleted != len(totals.row_ids):
                # Some rows are already gone (another run folded them); count nothing.
                raise GroupChangedError(
                    f"expected {len(totals.row_ids)} sessions, deleted {deleted}"
                )

            stat = (
                await session.execute(
                    select(VisitorStat).where(
                        VisitorStat.date == key.date,
                        VisitorStat.hour == key.hour,
                        VisitorStat.country == key.country,
                        VisitorStat.device_type == key.device_type,
                        VisitorStat.browser == key.browser,
                        VisitorStat.os == key.os,
                        VisitorStat.referrer_category == key.referrer_category,
                    )
                )
            ).scalar_one_or_none()

            inserted = stat is None
            if inserted:
                session.add(
                    VisitorStat(
                        date=key.date,
                        hour=key.hour,
                        country=key.country,
                        device_type=key.device_type,
                        browser=key.browser,
                        os=key.os,
                        referrer_category=key.referrer_category,
                        total_visitors=len(totals.visitor_ids),
                        total_sessions=totals.sessions,
                        total_pageviews=totals.pageviews,
                        bounced_sessions=totals.bounced,
                        avg_session_duration=totals.avg_duration,
                    )
                )
            else:
                stat.avg_session_duration = merge_average(
                    stat.avg_session_duration or 0.0,
                    stat.total_sessions or 0,
                    totals.duration,
                    totals.sessions,
                )
                stat.total_visitors = (stat.total_visitors or 0) + len(totals.visitor_ids)
                stat.total_sessions = (stat.total_sessions or 0) + totals.sessions
                stat.total_pageviews = (stat.total_pageviews or 0) + totals.pageviews
                stat.bounced_sessions = (stat.bounced_sessions or 0) + totals.bounced

            await session.commit()
            return inserted, deleted
        except Exception:
            await session.rollback()
            raise


async def aggregate_sessions(
    factory: async_sessionmaker,
    now: datetime,
    cutoff_minutes: int,
    holder: str | None = None,
    lease_seconds: int | None = None,
) -> AggregationResult:
    """
    Roll up every eligible session. Assumes the caller holds the lease.

    With ``holder`` set the lease is renewed before each group, and the run
    stops as soon as renewal fails; unfolded groups wait for the next run.
    """
    lease_seconds = settings.aggregation_lease_seconds if lease_seconds is None else lease_seconds
    cutoff = now - timedelta(minutes=cutoff_minutes)

    async with factory() as session:
        rows = (
            await session.execute(
                select(VisitorSession).where(VisitorSession.created_at < cutoff)
            )
        ).scalars().all()

    if not rows:
        logger.info("No sessions to aggregate (cutoff %s)", cutoff.isoformat())
        return AggregationResult(message="No sessions to aggregate")

    groups = group_sessions(rows)
    logger.info("📊 Aggregating %d sessions into %d groups", len(rows), len(groups))

    result = AggregationResult(message="Sessions aggregated successfully")
    for key, totals in groups.items():
        if holder is not None and not await renew_lease(factory, holder, lease_seconds):
            result.success = False
            result.message = "Aggregation stopped: lease lost"
            logger.warning("⚠️  Lease %s lost mid-run, stopping", LEASE_NAME)
            break

        try:
            inserted, deleted = await _fold_group(factory, key, totals)
        except Exception as e:
            result.failed += 1
            logger.error(
                "❌ Group %s %02dh %s/%s/%s/%s/%s failed, %d sessions kept for next run: %s",
                key.date, key.hour, key.country, key.device_type, key.browser, key.os,
                key.referrer_category, totals.sessions, e,
            )
            continue

        result.aggregated += totals.sessions
        result.deleted += deleted
        if inserted:
            result.inserted += 1
        else:
            result.updated += 1

    if result.failed and result.success:
        result.message = f"Sessions aggregated with {result.failed} failed group(s)"
    logger.info(
        "✅ Aggregation done: %d sessions, %d inserted, %d updated, %d deleted, %d failed",
        result.aggregated, result.inserted, result.updated, result.deleted, result.failed,
    )
    return result


async def run_aggregation(
    session_factory: async_sessionmaker | None = None,
    now: datetime | None = None,
    cutoff_minutes: int | None = None,
    lease_seconds: int | None = None,
) -> AggregationResult:
    """
    Lease-guarded aggregation run.

    Returns a result with ``skipped=True`` and zero counts when another
    runner holds the lease; no rows are read in that case.
    """
    if session_factory is None:
        from analytics_api.database import async_session_factory
        session_factory = async_session_factory

    now = now or _utcnow()
    cutoff_minutes = settings.aggregation_cutoff_minutes if cutoff_minutes is None else cutoff_minutes
    lease_seconds = settings.aggregation_lease_seconds if lease_seconds is None else lease_seconds
    holder = uuid.uuid4().hex

    if not await acquire_lease(session_factory, holder, now, lease_seconds):
        return AggregationResult(
            success=False, message="Aggregation already running", skipped=True
        )

    try:
        return await aggregate_sessions(
            session_factory, now, cutoff_minutes, holder=holder, lease_seconds=lease_seconds
        )
    finally:
        await release_lease(session_factory, holder)


async def get_aggregation_status(
    session_factory: async_sessionmaker | None = None,
    now: datetime | None = None,
    cutoff_minutes: int | None = None,
) -> AggregationStatus:
    """Counts of sessions waiting for rollup, sessions still fresh, and stats rows."""
    if session_factory is None:
        from analytics_api.database import async_session_factory
        session_factory = async_session_factory

    now = now or _utcnow()
    cutoff_minutes = settings.aggregation_cutoff_minutes if cutoff_minutes is None else cutoff_minutes
    cutoff = now - timedelta(minutes=cutoff_minutes)

    async with session_factory() as session:
        pending = (
            await session.execute(
                select(func.count()).select_from(VisitorSession).where(VisitorSession.created_at < cutoff)
            )
        ).scalar_one()
        recent = (
            await session.execute(
                select(func.count()).select_from(VisitorSession).where(VisitorSession.created_at >= cutoff)
            )
        ).scalar_one()
        stats = (
            await session.execute(select(func.count()).select_from(VisitorStat))
        ).scalar_one()

    return AggregationStatus(
        pending_aggregation=pending,
        recent_sessions=recent,
        total_stats_records=stats,
    )


# ─────────────────────────────────────────────────────────────────────
# in-process schedule
# ─────────────────────────────────────────────────────────────────────

async def periodic_aggregation(interval: int) -> None:
    """Run the aggregation every ``interval`` seconds until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval)
            await run_aggregation()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Periodic aggregation error: %s", e)
