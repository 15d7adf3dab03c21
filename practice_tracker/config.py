from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"

    database_url: str = Field("sqlite:////tmp/practice_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    # Empty value selects the per-process limiter.
    redis_url: str = Field("", alias="REDIS_URL")

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    openai_timeout_seconds: float = Field(30.0, alias="OPENAI_TIMEOUT_SECONDS")

    ai_max_requests_per_minute: int = Field(10, alias="AI_MAX_REQUESTS_PER_MINUTE")
    ai_max_requests_per_day: int = Field(200, alias="AI_MAX_REQUESTS_PER_DAY")
    ai_max_tokens_per_month: int = Field(200_000, alias="AI_MAX_TOKENS_PER_MONTH")
    usage_timezone: str = Field(
        "UTC",
        alias="USAGE_TIMEZONE",
        description="Zone used for the daily and monthly usage boundaries",
    )

    rate_limit_global_per_minute: int = Field(300, alias="RATE_LIMIT_GLOBAL_PER_MINUTE")
    rate_limit_user_per_minute: int = Field(60, alias="RATE_LIMIT_USER_PER_MINUTE")
    rate_limit_user_block_seconds: int = Field(60, alias="RATE_LIMIT_USER_BLOCK_SECONDS")
    rate_limit_ai_per_minute: int = Field(10, alias="RATE_LIMIT_AI_PER_MINUTE")
    rate_limit_ai_block_seconds: int = Field(300, alias="RATE_LIMIT_AI_BLOCK_SECONDS")

    default_daily_target: int = Field(20, alias="DEFAULT_DAILY_TARGET")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key.strip())
