from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import text
from sqlalchemy.orm import Session

from stockai.config import Settings
from stockai.models import User

settings = Settings()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def usage_day(now: datetime | None = None) -> str:
    """Calendar day (YYYY-MM-DD) in the service's reference timezone."""
    now = now or utcnow()
    return now.astimezone(ZoneInfo(settings.usage_timezone)).strftime("%Y-%m-%d")


def ensure_user(db: Session, user_id: str) -> None:
    db.execute(
        text(
            "INSERT INTO users (id, plan, created_at, updated_at) "
            "VALUES (:id, 'free', :now, :now) ON CONFLICT (id) DO NOTHING"
        ),
        {"id": user_id, "now": utcnow()},
    )


def touch_user(db: Session, user_id: str) -> None:
    """Create the user row if needed and write-lock it for this transaction.

    Concurrent writers for the same user queue up behind this statement.
    """
    ensure_user(db, user_id)
    db.execute(
        text("UPDATE users SET updated_at = :now WHERE id = :id"),
        {"id": user_id, "now": utcnow()},
    )


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        ensure_user(db, user_id)
        db.commit()
        user = db.get(User, user_id)
    return user


__all__ = ["utcnow", "as_utc", "usage_day", "ensure_user", "touch_user", "get_user"]
