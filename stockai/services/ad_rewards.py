"""Ad-reward ledger: daily caps, cooldowns and bonus quota earned by ads."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any

import jwt
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockai.config import Settings
from stockai.errors import AdsNotEligible, Cooldown, DailyCapReached, InvalidWatchToken
from stockai.metrics import ad_reward_total
from stockai.models import AdReward, DailyAdSummary
from stockai.services import subscriptions
from stockai.services.users import as_utc, ensure_user, usage_day, utcnow

settings = Settings()
logger = logging.getLogger(__name__)

AD_REWARD_CONFIG: dict[str, Any] = {
    "rewards": {
        "rewarded": {"refresh": 3, "level2": 1, "level3": 0},
        "interstitial": {"refresh": 1, "level2": 0, "level3": 0},
    },
    "daily_limits": {"rewarded": 10, "interstitial": 20},
    "cooldown_s": {"rewarded": 60, "interstitial": 30},
    "eligible_plans": ("free", "basic"),
}

AD_TYPES = tuple(AD_REWARD_CONFIG["rewards"])
# highest-value usage type first
REWARD_PRIORITY = ("level3", "level2", "refresh")
_SUMMARY_COLUMNS = {
    "refresh": "refresh_earned",
    "level2": "level2_earned",
    "level3": "level3_earned",
}
_TOKEN_ALG = "HS256"


def _rewards(ad_type: str) -> dict[str, int]:
    try:
        return AD_REWARD_CONFIG["rewards"][ad_type]
    except KeyError:
        raise ValueError(f"Invalid ad type: {ad_type}") from None


def config_payload() -> dict[str, Any]:
    return {
        "rewards": AD_REWARD_CONFIG["rewards"],
        "dailyLimits": AD_REWARD_CONFIG["daily_limits"],
        "cooldown": AD_REWARD_CONFIG["cooldown_s"],
        "eligiblePlans": list(AD_REWARD_CONFIG["eligible_plans"]),
    }


def is_eligible(plan: str) -> bool:
    return plan in AD_REWARD_CONFIG["eligible_plans"]


def select_reward(ad_type: str, preferred: str | None = None) -> tuple[str, int]:
    """Pick the reward granted by ``ad_type``.

    ``preferred`` wins when the ad grants it; otherwise the highest-value
    usage type with a non-zero amount is chosen.
    """
    rewards = _rewards(ad_type)
    if preferred and rewards.get(preferred, 0) > 0:
        return preferred, rewards[preferred]
    for usage_type in REWARD_PRIORITY:
        if rewards.get(usage_type, 0) > 0:
            return usage_type, rewards[usage_type]
    return "refresh", 0


def _watched_today(db: Session, user_id: str, ad_type: str, day: str) -> int:
    return (
        db.query(func.count(AdReward.id))
        .filter(AdReward.user_id == user_id, AdReward.date == day, AdReward.ad_type == ad_type)
        .scalar()
        or 0
    )


def _last_watch(db: Session, user_id: str, ad_type: str) -> datetime | None:
    last = (
        db.query(func.max(AdReward.watched_at))
        .filter(AdReward.user_id == user_id, AdReward.ad_type == ad_type)
        .scalar()
    )
    if isinstance(last, str):
        last = datetime.fromisoformat(last)
    return as_utc(last)


def can_watch(
    db: Session,
    *,
    user_id: str,
    ad_type: str = "rewarded",
    plan: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Return the remaining allowance or raise the reason the ad is blocked."""
    rewards = _rewards(ad_type)
    now = now or utcnow()
    if plan is None:
        plan = subscriptions.effective_plan(db, user_id=user_id, now=now)
    if not is_eligible(plan):
        raise AdsNotEligible(plan)

    cap = AD_REWARD_CONFIG["daily_limits"][ad_type]
    watched = _watched_today(db, user_id, ad_type, usage_day(now))
    if watched >= cap:
        raise DailyCapReached(ad_type, cap, watched)

    cooldown = AD_REWARD_CONFIG["cooldown_s"][ad_type]
    last = _last_watch(db, user_id, ad_type)
    if last is not None:
        elapsed = (now - last).total_seconds()
        if elapsed < cooldown:
            raise Cooldown(ad_type, math.ceil(cooldown - elapsed))

    return {
        "canWatch": True,
        "adType": ad_type,
        "remaining": cap - watched,
        "dailyLimit": cap,
        "rewards": rewards,
    }


def _lock_summary(db: Session, user_id: str, day: str) -> None:
    ensure_user(db, user_id)
    db.execute(
        text(
            "INSERT INTO daily_ad_summary (user_id, date, total_ads_watched, "
            "refresh_earned, level2_earned, level3_earned, updated_at) "
            "VALUES (:uid, :day, 0, 0, 0, 0, :now) "
            "ON CONFLICT (user_id, date) DO NOTHING"
        ),
        {"uid": user_id, "day": day, "now": utcnow()},
    )
    db.execute(
        text("UPDATE daily_ad_summary SET updated_at = :now WHERE user_id = :uid AND date = :day"),
        {"uid": user_id, "day": day, "now": utcnow()},
    )


def complete_watch(
    db: Session,
    *,
    user_id: str,
    ad_type: str = "rewarded",
    provider: str | None = None,
    unit_id: str | None = None,
    preferred: str | None = None,
    watch_token_id: str | None = None,
    plan: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record a completed ad view and grant its reward."""
    now = now or utcnow()
    day = usage_day(now)
    if plan is None:
        plan = subscriptions.effective_plan(db, user_id=user_id, now=now)

    _lock_summary(db, user_id, day)
    try:
        # re-validated under the per-user lock against replays
        can_watch(db, user_id=user_id, ad_type=ad_type, plan=plan, now=now)
    except (AdsNotEligible, DailyCapReached, Cooldown):
        db.rollback()
        raise

    reward_type, amount = select_reward(ad_type, preferred)
    column = _SUMMARY_COLUMNS[reward_type]
    db.add(
        AdReward(
            user_id=user_id,
            date=day,
            ad_type=ad_type,
            reward_type=reward_type,
            reward_amount=amount,
            ad_provider=provider,
            ad_unit_id=unit_id,
            watch_token_id=watch_token_id,
            watched_at=now,
        )
    )
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidWatchToken("Watch token already redeemed") from exc

    db.execute(
        text(
            f"UPDATE daily_ad_summary SET total_ads_watched = total_ads_watched + 1, "
            f"{column} = {column} + :amount, updated_at = :now "
            "WHERE user_id = :uid AND date = :day"
        ),
        {"amount": amount, "now": now, "uid": user_id, "day": day},
    )
    db.commit()
    ad_reward_total.labels(ad_type=ad_type).inc()
    logger.info(
        "ad reward granted: %s x%s",
        reward_type,
        amount,
        extra={"user_id": user_id, "ad_type": ad_type},
    )
    return {
        "rewardType": reward_type,
        "rewardAmount": amount,
        "todaySummary": earned_today(db, user_id=user_id, now=now),
    }


def earned_today(db: Session, *, user_id: str, now: datetime | None = None) -> dict[str, int]:
    summary = db.get(DailyAdSummary, {"user_id": user_id, "date": usage_day(now)})
    if summary is None:
        return {"refresh": 0, "level2": 0, "level3": 0, "totalAdsWatched": 0}
    db.refresh(summary)
    return {
        "refresh": summary.refresh_earned,
        "level2": summary.level2_earned,
        "level3": summary.level3_earned,
        "totalAdsWatched": summary.total_ads_watched,
    }


def ad_bonus(db: Session, *, user_id: str, usage_type: str, now: datetime | None = None) -> int:
    """Bonus units for ``usage_type``; 0 for types ads cannot unlock."""
    if usage_type not in _SUMMARY_COLUMNS:
        return 0
    return earned_today(db, user_id=user_id, now=now)[usage_type]


def unlockable(usage_type: str) -> bool:
    return any(rewards.get(usage_type, 0) > 0 for rewards in AD_REWARD_CONFIG["rewards"].values())


def can_unlock(
    db: Session,
    *,
    user_id: str,
    usage_type: str,
    plan: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Whether watching a rewarded ad right now would add ``usage_type`` quota."""
    amount = _rewards("rewarded").get(usage_type, 0)
    if amount <= 0:
        return {"canUnlock": False, "reason": "NOT_AVAILABLE", "usageType": usage_type}
    try:
        can_watch(db, user_id=user_id, ad_type="rewarded", plan=plan, now=now)
    except (AdsNotEligible, DailyCapReached, Cooldown) as exc:
        payload = {"canUnlock": False, "reason": exc.code.value, "usageType": usage_type}
        if isinstance(exc, Cooldown):
            payload["remainingSeconds"] = exc.remaining_seconds
        return payload
    return {
        "canUnlock": True,
        "adType": "rewarded",
        "usageType": usage_type,
        "rewardAmount": amount,
    }


def status(db: Session, *, user_id: str, plan: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    per_type: dict[str, Any] = {}
    for ad_type in AD_TYPES:
        try:
            per_type[ad_type] = can_watch(db, user_id=user_id, ad_type=ad_type, plan=plan, now=now)
        except (AdsNotEligible, DailyCapReached, Cooldown) as exc:
            per_type[ad_type] = {"canWatch": False, **exc.to_payload()}
    return {
        "eligible": is_eligible(plan),
        "plan": plan,
        "adTypes": per_type,
        "earnedToday": earned_today(db, user_id=user_id, now=now),
    }


def user_ad_stats(db: Session, *, user_id: str, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    since = usage_day(now - timedelta(days=days))
    rows = (
        db.query(AdReward.ad_type, func.count(AdReward.id), func.coalesce(func.sum(AdReward.reward_amount), 0))
        .filter(AdReward.user_id == user_id, AdReward.date >= since)
        .group_by(AdReward.ad_type)
        .all()
    )
    by_type = {ad_type: {"count": count, "rewards": int(total)} for ad_type, count, total in rows}
    daily = (
        db.query(DailyAdSummary)
        .filter(DailyAdSummary.user_id == user_id, DailyAdSummary.date >= since)
        .order_by(DailyAdSummary.date.desc())
        .all()
    )
    return {
        "totalAds": sum(v["count"] for v in by_type.values()),
        "byType": by_type,
        "dailyBreakdown": [
            {
                "date": s.date,
                "totalAdsWatched": s.total_ads_watched,
                "refreshEarned": s.refresh_earned,
                "level2Earned": s.level2_earned,
            }
            for s in daily
        ],
    }


def issue_watch_token(user_id: str, ad_type: str, *, now: datetime | None = None) -> tuple[str, datetime]:
    _rewards(ad_type)
    now = now or utcnow()
    expires_at = now + timedelta(seconds=settings.ad_watch_token_ttl_s)
    payload = {
        "sub": user_id,
        "ad_type": ad_type,
        "jti": uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, settings.ad_token_secret, algorithm=_TOKEN_ALG)
    return token, expires_at


def verify_watch_token(token: str, *, user_id: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(token, settings.ad_token_secret, algorithms=[_TOKEN_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise InvalidWatchToken("Watch token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidWatchToken("Invalid watch token") from exc
    if claims.get("sub") != user_id:
        raise InvalidWatchToken("Watch token issued to another user")
    if claims.get("ad_type") not in AD_TYPES:
        raise InvalidWatchToken("Invalid watch token")
    return claims


__all__ = [
    "AD_REWARD_CONFIG",
    "AD_TYPES",
    "config_payload",
    "is_eligible",
    "select_reward",
    "can_watch",
    "complete_watch",
    "earned_today",
    "ad_bonus",
    "unlockable",
    "can_unlock",
    "status",
    "user_ad_stats",
    "issue_watch_token",
    "verify_watch_token",
]
