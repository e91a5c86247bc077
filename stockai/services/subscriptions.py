"""Subscription lifecycle: purchase, lazy expiry with grace, cancel, restore."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockai.config import Settings
from stockai.errors import NoActiveSubscription, NothingToRestore, UnknownProduct, VerificationFailed
from stockai.metrics import subscription_transition_total
from stockai.models import Subscription, SubscriptionHistory, SubscriptionStatus, User
from stockai.services import plan_catalog
from stockai.services.users import as_utc, touch_user, utcnow

settings = Settings()
logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
CANCELLED = SubscriptionStatus.CANCELLED.value
GRACE = SubscriptionStatus.GRACE_PERIOD.value
EXPIRED = SubscriptionStatus.EXPIRED.value
UPGRADED = SubscriptionStatus.UPGRADED.value
PENDING = SubscriptionStatus.PENDING.value

# statuses that still grant the subscribed plan
LIVE_STATUSES = (ACTIVE, GRACE, CANCELLED)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({ACTIVE, CANCELLED, EXPIRED, UPGRADED}),
    ACTIVE: frozenset({CANCELLED, EXPIRED, GRACE, UPGRADED}),
    GRACE: frozenset({ACTIVE, EXPIRED, UPGRADED}),
    CANCELLED: frozenset({ACTIVE, EXPIRED, UPGRADED}),
    EXPIRED: frozenset(),
    UPGRADED: frozenset(),
}


@dataclass
class VerifiedPurchase:
    """Outcome of a store receipt verification."""

    product_id: str
    transaction_id: str
    platform: str
    purchased_at: datetime | None = None
    expires_at: datetime | None = None
    original_transaction_id: str | None = None
    receipt: str | None = None


@dataclass
class SubscriptionState:
    active: bool
    plan: str
    status: str | None = None
    subscription_id: int | None = None
    product_id: str | None = None
    expires_at: datetime | None = None
    grace_period_ends_at: datetime | None = None
    expired_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "active": self.active,
            "plan": self.plan,
            "status": self.status,
            "subscriptionId": self.subscription_id,
            "productId": self.product_id,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
        if self.grace_period_ends_at is not None:
            data["gracePeriodEndsAt"] = self.grace_period_ends_at.isoformat()
        if self.expired_at is not None:
            data["expiredAt"] = self.expired_at.isoformat()
        data.update(self.extra)
        return data


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def _record(db: Session, row: Subscription, action: str, plan: str | None = None) -> None:
    db.add(
        SubscriptionHistory(
            user_id=row.user_id,
            subscription_id=row.id,
            plan=plan or row.plan_id,
            action=action,
        )
    )


def _transition(
    db: Session, row: Subscription, to_status: str, action: str, **values: Any
) -> bool:
    """Move ``row`` to ``to_status`` if it is still in the status we read.

    Returns ``False`` when another writer already applied a transition; the
    row is refreshed in that case.
    """
    from_status = row.status
    if from_status == to_status:
        return False
    if not can_transition(from_status, to_status):
        raise ValueError(f"illegal transition {from_status} -> {to_status}")
    result = db.execute(
        update(Subscription)
        .where(Subscription.id == row.id, Subscription.status == from_status)
        .values(status=to_status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(row)
        return False
    row.status = to_status
    for key, value in values.items():
        setattr(row, key, value)
    _record(db, row, action)
    subscription_transition_total.labels(status=to_status).inc()
    logger.info(
        "subscription %s: %s -> %s",
        row.id,
        from_status,
        to_status,
        extra={"user_id": row.user_id, "action": action},
    )
    return True


def _set_user_plan(db: Session, user_id: str, plan: str) -> None:
    user = db.get(User, user_id)
    if user is not None and user.plan != plan:
        user.plan = plan


def _latest_live(db: Session, user_id: str) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def _find_transaction(db: Session, platform: str, transaction_id: str) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(
            Subscription.platform == platform,
            Subscription.transaction_id == transaction_id,
        )
        .one_or_none()
    )


def process_purchase(db: Session, *, user_id: str, purchase: VerifiedPurchase) -> Subscription:
    """Record a verified purchase and make its plan the user's plan.

    A purchase whose transaction id was already recorded returns the
    existing row. Any live subscription of the user is marked ``upgraded``.
    """
    plan_id = plan_catalog.plan_for_product(purchase.product_id)
    if plan_id is None:
        raise UnknownProduct(purchase.product_id)

    touch_user(db, user_id)
    existing = _find_transaction(db, purchase.platform, purchase.transaction_id)
    if existing is not None:
        db.commit()
        if existing.user_id != user_id:
            raise VerificationFailed("Transaction already claimed by another account")
        return existing

    prior = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
        .all()
    )
    for row in prior:
        _transition(db, row, UPGRADED, "upgrade")

    now = utcnow()
    sub = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        product_id=purchase.product_id,
        transaction_id=purchase.transaction_id,
        original_transaction_id=purchase.original_transaction_id or purchase.transaction_id,
        platform=purchase.platform,
        status=ACTIVE,
        purchased_at=purchase.purchased_at or now,
        expires_at=purchase.expires_at,
        receipt_data=purchase.receipt,
    )
    db.add(sub)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = _find_transaction(db, purchase.platform, purchase.transaction_id)
        if existing is None:
            raise
        logger.info("duplicate transaction %s resolved to %s", purchase.transaction_id, existing.id)
        return existing

    _record(db, sub, "subscribe")
    _set_user_plan(db, user_id, plan_id)
    subscription_transition_total.labels(status=ACTIVE).inc()
    db.commit()
    db.refresh(sub)
    logger.info(
        "subscription %s active: plan=%s platform=%s",
        sub.id,
        plan_id,
        purchase.platform,
        extra={"user_id": user_id},
    )
    return sub


def _latest_expired(db: Session, user_id: str) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == EXPIRED)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def _expired_state(row: Subscription) -> SubscriptionState:
    expires_at = as_utc(row.expires_at)
    return SubscriptionState(
        active=False,
        plan=plan_catalog.DEFAULT_PLAN,
        status=EXPIRED,
        subscription_id=row.id,
        product_id=row.product_id,
        expires_at=expires_at,
        expired_at=expires_at,
    )


def resolve_status(db: Session, *, user_id: str, now: datetime | None = None) -> SubscriptionState:
    """Return the effective plan, applying expiry and grace lazily.

    Repeated calls report the same state: once the last subscription has
    expired, that expired row keeps being reported until a new purchase.
    """
    now = now or utcnow()
    row = _latest_live(db, user_id)
    if row is None:
        expired = _latest_expired(db, user_id)
        if expired is None:
            return SubscriptionState(active=False, plan=plan_catalog.DEFAULT_PLAN)
        return _expired_state(expired)

    expires_at = as_utc(row.expires_at)
    plan = plan_catalog.resolve_plan_id(row.plan_id)
    if expires_at is None or now <= expires_at:
        return SubscriptionState(
            active=True,
            plan=plan,
            status=row.status,
            subscription_id=row.id,
            product_id=row.product_id,
            expires_at=expires_at,
        )

    grace_ends = expires_at + timedelta(days=settings.subscription_grace_days)
    if row.status != CANCELLED and now <= grace_ends:
        if row.status != GRACE:
            moved = _transition(db, row, GRACE, "grace_period")
            db.commit()
            if not moved:
                # another writer changed the row first
                return resolve_status(db, user_id=user_id, now=now)
        return SubscriptionState(
            active=True,
            plan=plan,
            status=GRACE,
            subscription_id=row.id,
            product_id=row.product_id,
            expires_at=expires_at,
            grace_period_ends_at=grace_ends,
        )

    if not _transition(db, row, EXPIRED, "expire"):
        db.commit()
        return resolve_status(db, user_id=user_id, now=now)
    if _latest_live(db, user_id) is not None:
        db.commit()
        return resolve_status(db, user_id=user_id, now=now)
    _set_user_plan(db, user_id, plan_catalog.DEFAULT_PLAN)
    db.commit()
    return _expired_state(row)


def effective_plan(db: Session, *, user_id: str, now: datetime | None = None) -> str:
    return resolve_status(db, user_id=user_id, now=now).plan


def cancel(db: Session, *, user_id: str, reason: str | None = None) -> Subscription:
    """Cancel the active subscription; the plan stays until ``expires_at``."""
    touch_user(db, user_id)
    row = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == ACTIVE)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if row is None:
        db.commit()
        raise NoActiveSubscription("No active subscription to cancel")
    _transition(db, row, CANCELLED, "cancel", cancel_reason=reason)
    db.commit()
    return row


def restore(
    db: Session,
    *,
    user_id: str,
    purchase: VerifiedPurchase | None,
    now: datetime | None = None,
) -> Subscription:
    now = now or utcnow()
    expires_at = as_utc(purchase.expires_at) if purchase else None
    if purchase is None or expires_at is None or expires_at <= now:
        raise NothingToRestore("No unexpired purchase to restore")
    return process_purchase(db, user_id=user_id, purchase=purchase)


def apply_store_event(
    db: Session,
    *,
    platform: str,
    transaction_id: str,
    target_status: str,
    expires_at: datetime | None = None,
    action: str | None = None,
) -> Subscription | None:
    """Apply a store notification to the matching subscription.

    Unknown transactions and illegal transitions are logged and ignored.
    """
    row = (
        db.query(Subscription)
        .filter(
            Subscription.platform == platform,
            or_(
                Subscription.transaction_id == transaction_id,
                Subscription.original_transaction_id == transaction_id,
            ),
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if row is None:
        logger.warning("store event for unknown transaction %s (%s)", transaction_id, platform)
        return None

    action = action or target_status
    values: dict[str, Any] = {}
    if expires_at is not None:
        values["expires_at"] = expires_at

    if row.status == target_status:
        if values:
            for key, value in values.items():
                setattr(row, key, value)
            _record(db, row, action)
            db.commit()
        return row
    if not can_transition(row.status, target_status):
        logger.warning(
            "ignored store event %s for subscription %s in status %s",
            action,
            row.id,
            row.status,
        )
        return None

    touch_user(db, row.user_id)
    _transition(db, row, target_status, action, **values)
    if target_status == EXPIRED and _latest_live(db, row.user_id) is None:
        _set_user_plan(db, row.user_id, plan_catalog.DEFAULT_PLAN)
    elif target_status == ACTIVE:
        _set_user_plan(db, row.user_id, row.plan_id)
    db.commit()
    return row


def history(db: Session, *, user_id: str, limit: int = 50) -> list[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .limit(limit)
        .all()
    )


def history_events(db: Session, *, user_id: str, limit: int = 50) -> list[SubscriptionHistory]:
    return (
        db.query(SubscriptionHistory)
        .filter(SubscriptionHistory.user_id == user_id)
        .order_by(SubscriptionHistory.id.desc())
        .limit(limit)
        .all()
    )


__all__ = [
    "VerifiedPurchase",
    "SubscriptionState",
    "TRANSITIONS",
    "can_transition",
    "process_purchase",
    "resolve_status",
    "effective_plan",
    "cancel",
    "restore",
    "apply_store_event",
    "history",
    "history_events",
]
