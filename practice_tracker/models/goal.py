from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Integer, String, Text

from .base import Base


class OverarchingGoal(Base):
    """Long-running musical goal; only the active one feeds the AI prompts."""

    __tablename__ = "overarching_goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    goal_type = Column(String(16), nullable=False, default="general")
    difficulty_level = Column(String(32))
    target_date = Column(Date)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "goal_type": self.goal_type,
            "difficulty_level": self.difficulty_level,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "status": self.status,
        }


__all__ = ["OverarchingGoal"]
