"""Append-only ledger of metered AI calls and per-user limit overrides."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Index, Integer, String

from .base import Base


class AiUsage(Base):
    """One governed AI call. Rows are never updated once written."""

    __tablename__ = "ai_usage"
    __table_args__ = (Index("ix_ai_usage_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    endpoint = Column(String(32), nullable=False)
    model = Column(String(64), nullable=False)
    prompt_tokens = Column(Integer)
    completion_tokens = Column(Integer)
    total_tokens = Column(Integer)
    cost_usd = Column(Float)
    status = Column(String(16), nullable=False, default="ok")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class AiLimits(Base):
    """Per-user override of the global AI limits; NULL columns use the defaults."""

    __tablename__ = "ai_limits"

    user_id = Column(String(64), primary_key=True)
    requests_per_minute = Column(Integer)
    requests_per_day = Column(Integer)
    tokens_per_month = Column(Integer)


__all__ = ["AiUsage", "AiLimits"]
