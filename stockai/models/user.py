from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from stockai.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    plan = Column(String(32), nullable=False, default="free", server_default="free")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["User"]
