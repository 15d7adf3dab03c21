from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from .base import Base


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(String(64), primary_key=True)
    daily_target = Column(Integer, nullable=False, server_default="20")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


__all__ = ["Profile"]
