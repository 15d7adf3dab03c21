from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String, Text

from .base import Base


def _now():
    return datetime.now(timezone.utc)


class PracticeLog(Base):
    """One practice submission with its parsed activities embedded as JSON."""

    __tablename__ = "practice_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    logged_at = Column(Date, nullable=False)
    raw_text = Column(Text, nullable=False)
    total_minutes = Column(Integer, nullable=False)
    activities = Column(JSON, nullable=False, default=list)
    parse_method = Column(String(16), nullable=False, default="heuristic")
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "logged_at": self.logged_at.isoformat() if self.logged_at else None,
            "raw_text": self.raw_text,
            "total_minutes": self.total_minutes,
            "activities": list(self.activities or []),
            "parse_method": self.parse_method,
        }


__all__ = ["PracticeLog"]
