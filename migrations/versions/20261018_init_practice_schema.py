"""init practice tracker schema

Revision ID: 20261018_init
Revises:
Create Date: 2026-10-18

- profiles, overarching_goals: per-user settings and the active goal
- practice_logs: parsed practice submissions
- weekly_insights: one summary per user and ISO week
- ai_usage, ai_limits: usage ledger and per-user limit overrides
"""
from alembic import op
import sqlalchemy as sa


revision = '20261018_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("daily_target", sa.Integer, nullable=False, server_default="20"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "overarching_goals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("goal_type", sa.String(length=16), nullable=False, server_default="general"),
        sa.Column("difficulty_level", sa.String(length=32), nullable=True),
        sa.Column("target_date", sa.Date, nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_overarching_goals_user_id", "overarching_goals", ["user_id"])

    op.create_table(
        "practice_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("logged_at", sa.Date, nullable=False),
        sa.Column("raw_text", sa.Text, nullable=False),
        sa.Column("total_minutes", sa.Integer, nullable=False),
        sa.Column("activities", sa.JSON, nullable=False),
        sa.Column("parse_method", sa.String(length=16), nullable=False, server_default="heuristic"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_practice_logs_user_id", "practice_logs", ["user_id"])

    op.create_table(
        "weekly_insights",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("week_start", sa.Date, nullable=False),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("suggestions", sa.JSON, nullable=False),
        sa.Column("metrics", sa.JSON, nullable=False),
        sa.Column("method", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "week_start", name="uq_weekly_insights_user_week"),
    )

    op.create_table(
        "ai_usage",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("endpoint", sa.String(length=32), nullable=False),
        sa.Column("model", sa.String(length=64), nullable=False),
        sa.Column("prompt_tokens", sa.Integer, nullable=True),
        sa.Column("completion_tokens", sa.Integer, nullable=True),
        sa.Column("total_tokens", sa.Integer, nullable=True),
        sa.Column("cost_usd", sa.Float, nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ok"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ai_usage_user_created", "ai_usage", ["user_id", "created_at"])

    op.create_table(
        "ai_limits",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("requests_per_minute", sa.Integer, nullable=True),
        sa.Column("requests_per_day", sa.Integer, nullable=True),
        sa.Column("tokens_per_month", sa.Integer, nullable=True),
    )


def downgrade() -> None:
    op.drop_table("ai_limits")
    op.drop_index("ix_ai_usage_user_created", table_name="ai_usage")
    op.drop_table("ai_usage")
    op.drop_table("weekly_insights")
    op.drop_index("ix_practice_logs_user_id", table_name="practice_logs")
    op.drop_table("practice_logs")
    op.drop_index("ix_overarching_goals_user_id", table_name="overarching_goals")
    op.drop_table("overarching_goals")
    op.drop_table("profiles")
