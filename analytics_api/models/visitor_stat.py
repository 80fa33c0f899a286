"""
Visitor Analytics: aggregated visitor statistics (the Stats Store).

One row per (date, hour, country, device, browser, os, referrer category).
Only the aggregation job writes here; rows are merged on every run that
touches their key and are never deleted.
"""

import uuid

from sqlalchemy import Column, Date, DateTime, Float, Index, Integer, String, func

from analytics_api.database import Base


class VisitorStat(Base):
    """Hourly dimensional rollup of raw visitor sessions."""
    __tablename__ = "visitor_stats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Composite key (date/hour are UTC, taken from the session's created_at)
    date = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)
    country = Column(String(16), nullable=False)
    device_type = Column(String(20), nullable=False)
    browser = Column(String(20), nullable=False)
    os = Column(String(20), nullable=False)
    referrer_category = Column(String(20), nullable=False)

    # Counters, summed across aggregation runs
    total_visitors = Column(Integer, nullable=False, default=0)
    total_sessions = Column(Integer, nullable=False, default=0)
    total_pageviews = Column(Integer, nullable=False, default=0)
    bounced_sessions = Column(Integer, nullable=False, default=0)

    # Session-count weighted mean, kept unrounded so repeated merges stay exact
    avg_session_duration = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            "ix_visitor_stats_key",
            "date", "hour", "country", "device_type", "browser", "os", "referrer_category",
            unique=True,
        ),
    )

    @property
    def total_duration(self) -> float:
        return (self.avg_session_duration or 0.0) * (self.total_sessions or 0)

    def __repr__(self):
        return (
            f"<VisitorStat {self.date} {self.hour:02d}h {self.country}/{self.device_type}/"
            f"{self.browser}/{self.os}/{self.referrer_category} ({self.total_sessions} sessions)>"
        )
