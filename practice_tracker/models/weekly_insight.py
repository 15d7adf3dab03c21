from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String, Text, UniqueConstraint

from .base import Base


def _now():
    return datetime.now(timezone.utc)


class WeeklyInsight(Base):
    __tablename__ = "weekly_insights"
    __table_args__ = (UniqueConstraint("user_id", "week_start", name="uq_weekly_insights_user_week"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    week_start = Column(Date, nullable=False)
    summary = Column(Text)
    suggestions = Column(JSON, nullable=False, default=list)
    metrics = Column(JSON, nullable=False, default=dict)
    method = Column(String(16))
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "week_start": self.week_start.isoformat(),
            "summary": self.summary,
            "suggestions": list(self.suggestions or []),
            "metrics": dict(self.metrics or {}),
            "method": self.method,
        }


__all__ = ["WeeklyInsight"]
