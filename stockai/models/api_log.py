from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text

from .base import Base


class ApiLog(Base):
    """Immutable record of a billed analysis call."""

    __tablename__ = "api_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    endpoint = Column(String(128), nullable=False)
    symbol = Column(String(32))
    timeframe = Column(String(8))
    analysis_level = Column(Integer)
    method = Column(String(32))
    degraded = Column(Boolean, nullable=False, default=False)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)
    response_time_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )


__all__ = ["ApiLog"]
