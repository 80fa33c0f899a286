"""
Tests for SQLAlchemy models: defaults, unique keys, helpers.
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from analytics_api.models.job_lease import JobLease
from analytics_api.models.visitor_session import DIMENSION_FIELDS, METRIC_FIELDS, VisitorSession
from analytics_api.models.visitor_stat import VisitorStat


class TestVisitorSession:
    async def test_defaults(self, db_session):
        s = VisitorSession(session_id="abc")
        db_session.add(s)
        await db_session.commit()

        row = (await db_session.execute(select(VisitorSession))).scalar_one()
        assert row.id
        assert row.visitor_id == "anonymous"
        assert row.country == "Unknown"
        assert row.page_views == 1
        assert row.session_duration == 0
        assert row.is_bounce is True
        assert row.created_at is not None
        assert row.last_activity is not None

    async def test_session_id_unique(self, db_session):
        db_session.add(VisitorSession(session_id="dup"))
        await db_session.commit()
        db_session.add(VisitorSession(session_id="dup"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    def test_dimension_and_metric_fields_disjoint(self):
        assert not set(DIMENSION_FIELDS) & set(METRIC_FIELDS)
        columns = set(VisitorSession.__table__.columns.keys())
        assert set(DIMENSION_FIELDS) <= columns
        assert set(METRIC_FIELDS) <= columns

    def test_to_dict(self):
        now = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
        s = VisitorSession(session_id="abc", page_views=3, created_at=now, last_activity=now)
        d = s.to_dict()
        assert d["session_id"] == "abc"
        assert d["page_views"] == 3
        assert d["created_at"] == now.isoformat()
        assert "ip" not in d

    def test_repr(self):
        assert "abc" in repr(VisitorSession(session_id="abc", page_views=2))


class TestVisitorStat:
    def _stat(self, **kw):
        fields = dict(
            date=date(2026, 3, 14), hour=9, country="BG", device_type="ios", browser="Safari",
            os="iOS", referrer_category="direct", total_visitors=1, total_sessions=4,
            total_pageviews=4, bounced_sessions=1, avg_session_duration=12.5,
        )
        fields.update(kw)
        return VisitorStat(**fields)

    async def test_composite_key_unique(self, db_session):
        db_session.add(self._stat())
        await db_session.commit()
        db_session.add(self._stat())
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_different_hour_is_a_different_row(self, db_session):
        db_session.add_all([self._stat(), self._stat(hour=10)])
        await db_session.commit()
        rows = (await db_session.execute(select(VisitorStat))).scalars().all()
        assert len(rows) == 2

    def test_total_duration(self):
        assert self._stat().total_duration == 50.0

    def test_repr(self):
        assert "09h" in repr(self._stat())


class TestJobLease:
    async def test_one_row_per_name(self, session_factory):
        now = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
        async with session_factory() as session:
            session.add(JobLease(name="visitor-aggregation", holder="a", acquired_at=now, expires_at=now))
            await session.commit()
        async with session_factory() as session:
            session.add(JobLease(name="visitor-aggregation", holder="b", acquired_at=now, expires_at=now))
            with pytest.raises(IntegrityError):
                await session.commit()
            await session.rollback()
