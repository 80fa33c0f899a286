"""
Visitor Analytics: job lease model.
A time-bounded exclusive claim so two scheduler firings never run the same job at once.
"""

from sqlalchemy import Column, String, DateTime

from analytics_api.database import Base


class JobLease(Base):
    """One row per named job while a runner holds it."""
    __tablename__ = "job_leases"

    name = Column(String(50), primary_key=True)          # e.g. "visitor-aggregation"
    holder = Column(String(64), nullable=False)          # random token of the current runner

    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<JobLease {self.name} held by {self.holder} until {self.expires_at}>"
