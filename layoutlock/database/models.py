"""
Database models for generation quota and burst rate-limit counters
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DesignGenerationUsage(Base):
    """Daily generation counter per client hash"""

    __tablename__ = "design_generation_usage"
    __table_args__ = (UniqueConstraint("client_hash", "usage_date", name="uq_design_generation_usage_client_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_hash = Column(String(64), nullable=False, index=True)
    usage_date = Column(Date, nullable=False, index=True)
    generation_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<DesignGenerationUsage(client={self.client_hash[:12]}, date={self.usage_date}, count={self.generation_count})>"


class RateLimitCounter(Base):
    """Short-window request counter per (client hash, endpoint)"""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (UniqueConstraint("client_hash", "endpoint", name="uq_rate_limit_counters_client_endpoint"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_hash = Column(String(64), nullable=False, index=True)
    endpoint = Column(String(100), nullable=False)
    window_started_at = Column(DateTime, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<RateLimitCounter(client={self.client_hash[:12]}, endpoint='{self.endpoint}', count={self.request_count})>"
