from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String

from .base import Base


class AdReward(Base):
    """One completed ad view and the reward it granted (append-only)."""

    __tablename__ = "ad_rewards"
    __table_args__ = (
        Index("ix_ad_rewards_user_date_type", "user_id", "date", "ad_type"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False)
    date = Column(String(10), nullable=False)
    ad_type = Column(String(32), nullable=False)
    reward_type = Column(String(16), nullable=False)
    reward_amount = Column(Integer, nullable=False, default=1)
    ad_provider = Column(String(64))
    ad_unit_id = Column(String(128))
    watch_token_id = Column(String(64), unique=True)
    watched_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class DailyAdSummary(Base):
    """Running per-day totals of ``ad_rewards`` rows."""

    __tablename__ = "daily_ad_summary"

    user_id = Column(String(128), primary_key=True)
    date = Column(String(10), primary_key=True)
    total_ads_watched = Column(Integer, nullable=False, server_default="0")
    refresh_earned = Column(Integer, nullable=False, server_default="0")
    level2_earned = Column(Integer, nullable=False, server_default="0")
    level3_earned = Column(Integer, nullable=False, server_default="0")
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


__all__ = ["AdReward", "DailyAdSummary"]
