"""
Visitor Analytics: Pydantic request/response schemas.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TimeRange(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    CUSTOM = "custom"


# ── Ingest ────────────────────────────────────────────────

class TrackPayload(BaseModel):
    """Beacon body sent by the session tracker. Only ``sessionId`` is required."""

    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=64)
    visitor_id: str | None = Field(None, alias="visitorId", max_length=64)
    device_type: str | None = Field(None, alias="deviceType", max_length=32)
    browser: str | None = Field(None, max_length=32)
    browser_version: str | None = Field(None, alias="browserVersion", max_length=32)
    os: str | None = Field(None, max_length=32)
    os_version: str | None = Field(None, alias="osVersion", max_length=32)
    referrer: str | None = Field(None, max_length=512)
    referrer_category: str | None = Field(None, alias="referrerCategory", max_length=32)
    entry_page: str | None = Field(None, alias="entryPage", max_length=512)
    exit_page: str | None = Field(None, alias="exitPage", max_length=512)
    page_views: int | None = Field(None, alias="pageViews", ge=0)
    session_duration: int | None = Field(None, alias="sessionDuration", ge=0)
    is_bounce: bool | None = Field(None, alias="isBounce")
    is_new_session: bool = Field(False, alias="isNewSession")
    is_exit: bool = Field(False, alias="isExit")

    model_config = {"populate_by_name": True}


class TrackResponse(BaseModel):
    success: bool = True
    created: bool | None = None
    updated: bool | None = None


# ── Aggregate ─────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AggregationResult(_CamelModel):
    success: bool = True
    message: str = ""
    aggregated: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: bool = False


class AggregationStatus(_CamelModel):
    success: bool = True
    pending_aggregation: int = 0
    recent_sessions: int = 0
    total_stats_records: int = 0


# ── Report ────────────────────────────────────────────────

class ReportSummary(_CamelModel):
    total_visitors: int = 0
    total_sessions: int = 0
    total_page_views: int = 0
    bounce_rate: float = 0.0
    avg_session_duration: int = 0


class CountryCount(BaseModel):
    country: str
    sessions: int


class DeviceCount(BaseModel):
    device: str
    sessions: int


class BrowserCount(BaseModel):
    browser: str
    sessions: int


class OsCount(BaseModel):
    os: str
    sessions: int


class ReferrerCount(BaseModel):
    referrer: str
    sessions: int


class DateRange(_CamelModel):
    start_date: str
    end_date: str
    time_range: TimeRange


class VisitorReport(_CamelModel):
    success: bool = True
    summary: ReportSummary
    top_countries: list[CountryCount] = []
    device_types: list[DeviceCount] = []
    browsers: list[BrowserCount] = []
    operating_systems: list[OsCount] = []
    referrer_sources: list[ReferrerCount] = []
    date_range: DateRange | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    timestamp: str | None = None
    database: str = "connected"
