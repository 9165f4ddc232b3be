"""Application settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..app.cutover import parse_cutover


DEFAULT_COMPLETION_QUERY = """
    SELECT count(*)
    FROM bill_payment
    WHERE CAST(created_at AS DATE) = {day}
        AND pay_status = 'done'
"""

COUNT_MODES = ("completed", "pending")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    DSN: str = "data/settlement.duckdb"
    WEBHOOK_URL: Optional[str] = None
    WEBHOOK_URL_SECONDARY: Optional[str] = None
    MENTIONS: str = ""
    COUNTRY_CODE: str = "+86"

    CUTOVER: str = "12:00"
    CHECK_INTERVAL_MINUTES: int = Field(default=30, gt=0)
    ALERT_INTERVAL_MINUTES: int = Field(default=60, gt=0)

    COMPLETION_QUERY: str = DEFAULT_COMPLETION_QUERY
    COUNT_MODE: str = "completed"  # 'pending' = non-zero count is outstanding work
    ACTIVITY_QUERY: Optional[str] = None
    ACTIVITY_GRACE_MINUTES: int = Field(default=30, ge=0)
    TIMEZONE: str = "Asia/Shanghai"
    RUN_ON_START: bool = False

    ALERT_TEMPLATE: str = "Payment settlement for {day} is still outstanding (count: {count}). Please follow up."
    COMPLETE_TEMPLATE: str = "Payment settlement for {day} is complete (count: {count})."

    HTTP_TIMEOUT: float = Field(default=10.0, gt=0)
    POLL_SECONDS: int = Field(default=30, gt=0)
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in .env file
    )

    @field_validator("CUTOVER")
    @classmethod
    def _check_cutover(cls, value: str) -> str:
        parse_cutover(value)
        return value

    @field_validator("COUNT_MODE")
    @classmethod
    def _check_count_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in COUNT_MODES:
            raise ValueError(f"COUNT_MODE must be one of {COUNT_MODES}, got {value!r}")
        return value

    @field_validator("TIMEZONE")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    """Settings from the environment, built on first use."""
    return Settings()
