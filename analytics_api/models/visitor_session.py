"""
Visitor Analytics: raw per-session rows (the Session Store).

Rows are created by the ingest endpoint, mutated by later beacons for the
same session, and deleted by the aggregation job once rolled up.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from analytics_api.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Written once on insert, never by the update path.
DIMENSION_FIELDS = (
    "visitor_id",
    "country",
    "device_type",
    "browser",
    "browser_version",
    "os",
    "os_version",
    "referrer",
    "referrer_category",
    "entry_page",
)

METRIC_FIELDS = (
    "exit_page",
    "page_views",
    "session_duration",
    "is_bounce",
    "last_activity",
)


class VisitorSession(Base):
    __tablename__ = "visitor_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    visitor_id: Mapped[str] = mapped_column(String(64), nullable=False, default="anonymous")

    # Dimensions (fixed at creation)
    country: Mapped[str] = mapped_column(String(16), nullable=False, default="Unknown")
    device_type: Mapped[str] = mapped_column(String(20), nullable=False, default="unknown")
    browser: Mapped[str] = mapped_column(String(20), nullable=False, default="Unknown")
    browser_version: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    os: Mapped[str] = mapped_column(String(20), nullable=False, default="Unknown")
    os_version: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    referrer: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    referrer_category: Mapped[str] = mapped_column(String(20), nullable=False, default="direct")
    entry_page: Mapped[str] = mapped_column(String(512), nullable=False, default="/")

    # Metrics (mutated by every beacon)
    exit_page: Mapped[str] = mapped_column(String(512), nullable=False, default="/")
    page_views: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    session_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_bounce: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_visitor_sessions_created_at", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "visitor_id": self.visitor_id,
            "country": self.country,
            "device_type": self.device_type,
            "browser": self.browser,
            "browser_version": self.browser_version,
            "os": self.os,
            "os_version": self.os_version,
            "referrer": self.referrer,
            "referrer_category": self.referrer_category,
            "entry_page": self.entry_page,
            "exit_page": self.exit_page,
            "page_views": self.page_views,
            "session_duration": self.session_duration,
            "is_bounce": self.is_bounce,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<VisitorSession {self.session_id} ({self.page_views} views)>"
