from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"
    UPGRADED = "upgraded"


SUBSCRIPTION_STATUSES = tuple(s.value for s in SubscriptionStatus)


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("platform", "transaction_id", name="uq_subscriptions_platform_tx"),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False)
    plan_id = Column(String(32), nullable=False)
    product_id = Column(String(128), nullable=False)
    transaction_id = Column(String(128), nullable=False)
    original_transaction_id = Column(String(128))
    platform = Column(String(16), nullable=False)
    status = Column(
        Enum(*SUBSCRIPTION_STATUSES, name="subscription_status", native_enum=False),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
    )
    purchased_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))
    cancel_reason = Column(String(255))
    receipt_data = Column(Text)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SubscriptionHistory(Base):
    """Audit trail of subscription actions."""

    __tablename__ = "subscription_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    subscription_id = Column(Integer)
    plan = Column(String(32), nullable=False)
    action = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


__all__ = ["Subscription", "SubscriptionHistory", "SubscriptionStatus"]
