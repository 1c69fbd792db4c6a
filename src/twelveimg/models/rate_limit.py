from sqlalchemy import Column, DateTime, Integer, String

from twelveimg.db.database import Base


class RateLimitCounter(Base):
    """Fixed-window request counter shared by every app instance."""
    __tablename__ = "rate_limit_counters"

    key = Column(String, primary_key=True)
    window_start = Column(DateTime(timezone=True), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
