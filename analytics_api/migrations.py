"""
Database Migrations: idempotent index statements.

create_all() only creates missing tables; indexes added to an existing
deployment after its tables were created are applied here instead.

Called from main.py lifespan AFTER init_db().
"""

import logging

from sqlalchemy import text

from analytics_api.database import engine

logger = logging.getLogger("analytics.migrations")

# Each migration: (name, table, sql). CREATE INDEX IF NOT EXISTS works on
# both SQLite and PostgreSQL 9.5+.
_MIGRATIONS = [
    # ── Session Store ──
    ("ix_sessions_created_at", "visitor_sessions",
     "CREATE INDEX IF NOT EXISTS ix_visitor_sessions_created_at ON visitor_sessions (created_at)"),
    ("ix_sessions_visitor", "visitor_sessions",
     "CREATE INDEX IF NOT EXISTS ix_visitor_sessions_visitor_id ON visitor_sessions (visitor_id)"),

    # ── Stats Store ──
    ("ix_stats_key", "visitor_stats",
     "CREATE UNIQUE INDEX IF NOT EXISTS ix_visitor_stats_key ON visitor_stats "
     "(date, hour, country, device_type, browser, os, referrer_category)"),
    ("ix_stats_date", "visitor_stats",
     "CREATE INDEX IF NOT EXISTS ix_visitor_stats_date ON visitor_stats (date)"),
]


async def run_migrations() -> int:
    """Run all pending migrations. Returns count of statements executed."""
    count = 0
    async with engine.begin() as conn:
        for name, table, sql in _MIGRATIONS:
            try:
                await conn.execute(text(sql))
                count += 1
            except Exception as e:
                # IF NOT EXISTS means most errors are truly unexpected
                logger.warning("Migration '%s' on %s failed: %s", name, table, e)
    logger.info("Migrations complete: %d statements executed", count)
    return count
