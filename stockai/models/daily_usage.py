from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from .base import Base


class DailyUsage(Base):
    """Per-day metered usage counters of a user."""

    __tablename__ = "daily_usage"

    user_id = Column(String(128), primary_key=True)
    date = Column(String(10), primary_key=True)  # YYYY-MM-DD in the usage timezone
    refresh_count = Column(Integer, nullable=False, server_default="0")
    level1_count = Column(Integer, nullable=False, server_default="0")
    level2_count = Column(Integer, nullable=False, server_default="0")
    level3_count = Column(Integer, nullable=False, server_default="0")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["DailyUsage"]
