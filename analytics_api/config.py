"""
Visitor Analytics: Configuration via environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./visitor_analytics.db",
        description="Async SQLAlchemy DB URL",
    )

    # Admin access (privileged aggregate/report endpoints)
    admin_token: str = Field(
        default="",
        description="Shared admin token; empty means every privileged call is denied",
    )

    # Rate limiting (ingest endpoint, per client IP, fixed window)
    rate_limit_requests: int = Field(default=100, description="Requests allowed per window")
    rate_limit_window_seconds: int = Field(default=60)
    trust_forwarded_headers: bool = Field(
        default=True,
        description="Key clients by X-Forwarded-For / X-Real-IP; turn off unless a proxy in front overwrites them",
    )
    rate_limit_sweep_interval: int = Field(
        default=300, description="Seconds between sweeps of expired rate-limit records"
    )

    # Geolocation
    geo_lookup_url: str = Field(
        default="http://ip-api.com/json/{ip}?fields=countryCode",
        description="Lookup URL template; {ip} is substituted",
    )
    geo_timeout_seconds: float = Field(default=2.0)

    # Aggregation
    aggregation_cutoff_minutes: int = Field(
        default=60, description="Raw sessions older than this are rolled up and deleted"
    )
    aggregation_interval_seconds: int = Field(
        default=0, description="In-process aggregation loop interval; 0 leaves it to an external scheduler"
    )
    aggregation_lease_seconds: int = Field(
        default=900, description="How long one aggregation run may hold the job lease"
    )

    # Reporting
    report_country_limit: int = Field(default=10)

    # Client tracker
    session_timeout_minutes: int = Field(default=30)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
