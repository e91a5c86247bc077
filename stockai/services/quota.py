"""Per-user, per-day quota ledger.

Counters live in ``daily_usage``; admission is decided by a conditional
``UPDATE`` so concurrent requests of one user never exceed the limit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from stockai.errors import QuotaExceeded
from stockai.metrics import quota_reject_total
from stockai.models import ApiLog, DailyUsage
from stockai.services import ad_rewards, plan_catalog, subscriptions
from stockai.services.plan_catalog import UNLIMITED, Limit
from stockai.services.users import ensure_user, usage_day, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = {
    "refresh": "refresh_count",
    "level1": "level1_count",
    "level2": "level2_count",
    "level3": "level3_count",
}


@dataclass
class QuotaCheck:
    usage_type: str
    plan: str
    allowed: bool
    current: int
    base_limit: int | Limit
    ad_bonus: int = 0
    total_limit: int | Limit = 0
    remaining: int | Limit = 0

    @property
    def unlimited(self) -> bool:
        return self.base_limit is UNLIMITED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.usage_type,
            "plan": self.plan,
            "allowed": self.allowed,
            "current": self.current,
            "baseLimit": plan_catalog.render_limit(self.base_limit),
            "adBonus": self.ad_bonus,
            "totalLimit": plan_catalog.render_limit(self.total_limit),
            "remaining": plan_catalog.render_limit(self.remaining),
        }


def _column(usage_type: str) -> str:
    try:
        return _COLUMNS[usage_type]
    except KeyError:
        raise ValueError(f"Unknown usage type: {usage_type}") from None


def _ensure_row(db: Session, user_id: str, day: str) -> None:
    ensure_user(db, user_id)
    db.execute(
        text(
            "INSERT INTO daily_usage (user_id, date, refresh_count, level1_count, "
            "level2_count, level3_count, updated_at) "
            "VALUES (:uid, :day, 0, 0, 0, 0, :now) "
            "ON CONFLICT (user_id, date) DO NOTHING"
        ),
        {"uid": user_id, "day": day, "now": utcnow()},
    )


def get_usage(db: Session, *, user_id: str, now: datetime | None = None) -> DailyUsage:
    """Return today's counters, creating a zero row if absent."""
    day = usage_day(now)
    _ensure_row(db, user_id, day)
    db.commit()
    usage = db.get(DailyUsage, {"user_id": user_id, "date": day})
    db.refresh(usage)
    return usage


def _current(db: Session, user_id: str, usage_type: str, day: str) -> int:
    value = db.execute(
        text(f"SELECT {_column(usage_type)} FROM daily_usage WHERE user_id = :uid AND date = :day"),
        {"uid": user_id, "day": day},
    ).scalar()
    return int(value or 0)


def check_limit(
    db: Session,
    *,
    user_id: str,
    usage_type: str,
    plan: str | None = None,
    now: datetime | None = None,
) -> QuotaCheck:
    """Compare today's usage with plan limit plus ad bonus."""
    _column(usage_type)
    if plan is None:
        plan = subscriptions.effective_plan(db, user_id=user_id, now=now)
    day = usage_day(now)
    current = _current(db, user_id, usage_type, day)
    base = plan_catalog.limits(plan, usage_type)
    if base is UNLIMITED:
        # ad bonuses never apply to unlimited tiers
        return QuotaCheck(
            usage_type=usage_type,
            plan=plan,
            allowed=True,
            current=current,
            base_limit=UNLIMITED,
            total_limit=UNLIMITED,
            remaining=UNLIMITED,
        )
    bonus = ad_rewards.ad_bonus(db, user_id=user_id, usage_type=usage_type, now=now)
    total = base + bonus
    return QuotaCheck(
        usage_type=usage_type,
        plan=plan,
        allowed=current < total,
        current=current,
        base_limit=base,
        ad_bonus=bonus,
        total_limit=total,
        remaining=max(0, total - current),
    )


def increment(
    db: Session,
    *,
    user_id: str,
    usage_type: str,
    amount: int = 1,
    now: datetime | None = None,
) -> None:
    """Add ``amount`` to today's counter without checking the limit."""
    column = _column(usage_type)
    day = usage_day(now)
    _ensure_row(db, user_id, day)
    db.execute(
        text(
            f"UPDATE daily_usage SET {column} = {column} + :n, updated_at = :now "
            "WHERE user_id = :uid AND date = :day"
        ),
        {"n": amount, "now": utcnow(), "uid": user_id, "day": day},
    )
    db.commit()


def consume(
    db: Session,
    *,
    user_id: str,
    usage_type: str,
    amount: int = 1,
    plan: str | None = None,
    now: datetime | None = None,
) -> QuotaCheck:
    """Atomically add ``amount`` to today's counter if it stays within the limit.

    Raises :class:`QuotaExceeded` and leaves the counter untouched otherwise.
    Returns the quota state after consumption.
    """
    column = _column(usage_type)
    if plan is None:
        plan = subscriptions.effective_plan(db, user_id=user_id, now=now)
    day = usage_day(now)
    base = plan_catalog.limits(plan, usage_type)
    _ensure_row(db, user_id, day)

    if base is UNLIMITED:
        db.execute(
            text(
                f"UPDATE daily_usage SET {column} = {column} + :n, updated_at = :now "
                "WHERE user_id = :uid AND date = :day"
            ),
            {"n": amount, "now": utcnow(), "uid": user_id, "day": day},
        )
        db.commit()
        return check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan, now=now)

    total = base + ad_rewards.ad_bonus(db, user_id=user_id, usage_type=usage_type, now=now)
    result = db.execute(
        text(
            f"UPDATE daily_usage SET {column} = {column} + :n, updated_at = :now "
            f"WHERE user_id = :uid AND date = :day AND {column} + :n <= :limit"
        ),
        {"n": amount, "now": utcnow(), "uid": user_id, "day": day, "limit": total},
    )
    db.commit()
    check = check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan, now=now)
    if result.rowcount != 1:
        quota_reject_total.labels(usage_type=usage_type).inc()
        raise quota_error(db, check, user_id=user_id, now=now)
    return check


def quota_error(
    db: Session, check: QuotaCheck, *, user_id: str, now: datetime | None = None
) -> QuotaExceeded:
    """Build the actionable quota-exceeded error for ``check``."""
    unlock = ad_rewards.can_unlock(
        db, user_id=user_id, usage_type=check.usage_type, plan=check.plan, now=now
    )
    logger.info(
        "quota exceeded: %s %s/%s",
        check.usage_type,
        check.current,
        plan_catalog.render_limit(check.total_limit),
        extra={"user_id": user_id, "plan": check.plan},
    )
    return QuotaExceeded(
        check.usage_type,
        base_limit=check.base_limit if isinstance(check.base_limit, int) else 0,
        ad_bonus=check.ad_bonus,
        total_limit=check.total_limit if isinstance(check.total_limit, int) else 0,
        current=check.current,
        ad_unlock=unlock if unlock.get("canUnlock") else None,
        upgrade_hint={
            "currentPlan": check.plan,
            "recommendedPlan": plan_catalog.next_plan(check.plan),
        },
    )


def require(
    db: Session,
    *,
    user_id: str,
    usage_type: str,
    plan: str | None = None,
    now: datetime | None = None,
) -> QuotaCheck:
    """``check_limit`` that raises :class:`QuotaExceeded` when not allowed."""
    check = check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan, now=now)
    if not check.allowed:
        quota_reject_total.labels(usage_type=usage_type).inc()
        raise quota_error(db, check, user_id=user_id, now=now)
    return check


def reset_usage(
    db: Session,
    *,
    user_id: str,
    usage_type: str | None = None,
    now: datetime | None = None,
) -> None:
    """Administrative reset of today's counters."""
    columns = [_column(usage_type)] if usage_type else list(_COLUMNS.values())
    assignments = ", ".join(f"{c} = 0" for c in columns)
    db.execute(
        text(f"UPDATE daily_usage SET {assignments}, updated_at = :now WHERE user_id = :uid AND date = :day"),
        {"now": utcnow(), "uid": user_id, "day": usage_day(now)},
    )
    db.commit()
    logger.info("usage reset", extra={"user_id": user_id, "usage_type": usage_type or "all"})


def usage_summary(
    db: Session, *, user_id: str, plan: str, now: datetime | None = None
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for usage_type in plan_catalog.USAGE_TYPES:
        check = check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan, now=now)
        out[usage_type] = {
            "limit": plan_catalog.render_limit(check.total_limit),
            "baseLimit": plan_catalog.render_limit(check.base_limit),
            "adBonus": check.ad_bonus,
            "used": check.current,
            "remaining": plan_catalog.render_limit(check.remaining),
        }
    return out


def log_api_call(
    db: Session,
    *,
    user_id: str,
    endpoint: str,
    symbol: str | None = None,
    timeframe: str | None = None,
    analysis_level: int | None = None,
    method: str | None = None,
    degraded: bool = False,
    tokens_used: int = 0,
    cost_usd: float = 0.0,
    response_time_ms: int = 0,
    success: bool = True,
    error_message: str | None = None,
) -> ApiLog:
    entry = ApiLog(
        user_id=user_id,
        endpoint=endpoint,
        symbol=symbol,
        timeframe=timeframe,
        analysis_level=analysis_level,
        method=method,
        degraded=degraded,
        tokens_used=tokens_used,
        cost_usd=cost_usd,
        response_time_ms=response_time_ms,
        success=success,
        error_message=error_message,
    )
    db.add(entry)
    db.commit()
    return entry


def user_stats(db: Session, *, user_id: str, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    since = now - timedelta(days=days)
    rows = (
        db.query(
            ApiLog.analysis_level,
            func.count(ApiLog.id),
            func.coalesce(func.sum(ApiLog.tokens_used), 0),
            func.coalesce(func.sum(ApiLog.cost_usd), 0.0),
            func.avg(ApiLog.response_time_ms),
        )
        .filter(ApiLog.user_id == user_id, ApiLog.created_at >= since)
        .group_by(ApiLog.analysis_level)
        .all()
    )
    by_level = {
        str(level or 0): {
            "requests": count,
            "tokens": int(tokens),
            "costUsd": round(float(cost), 6),
            "avgResponseMs": round(float(avg or 0)),
        }
        for level, count, tokens, cost, avg in rows
    }
    usage_rows = (
        db.query(DailyUsage)
        .filter(DailyUsage.user_id == user_id, DailyUsage.date >= usage_day(since))
        .order_by(DailyUsage.date.desc())
        .all()
    )
    return {
        "days": days,
        "totalRequests": sum(v["requests"] for v in by_level.values()),
        "totalCostUsd": round(sum(v["costUsd"] for v in by_level.values()), 6),
        "byLevel": by_level,
        "daily": [
            {
                "date": u.date,
                "refresh": u.refresh_count,
                "level1": u.level1_count,
                "level2": u.level2_count,
                "level3": u.level3_count,
            }
            for u in usage_rows
        ],
    }


__all__ = [
    "QuotaCheck",
    "get_usage",
    "check_limit",
    "increment",
    "consume",
    "quota_error",
    "require",
    "reset_usage",
    "usage_summary",
    "log_api_call",
    "user_stats",
]
