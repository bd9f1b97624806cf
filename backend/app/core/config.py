# app/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "QuickVerdicts"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_AUTO_CREATE: bool = False

    # JWT Authentication
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    # Trial transition scheduler
    TRIAL_SCHEDULER_ENABLED: bool = True
    TRIAL_SCHEDULER_INTERVAL_SECONDS: int = 30
    WAR_ROOM_OPEN_OFFSET_MINUTES: int = 60
    TRIAL_REMINDER_OFFSET_MINUTES: int = 30
    TRIAL_SCHEDULER_LOOKBACK_HOURS: int = 24
    TRIAL_SCHEDULER_DB_TIMEOUT_SECONDS: float = 5.0

    # Schedule entry
    SCHEDULE_REQUIRE_TIMEZONE: bool = True

    # Countdown reminders (days before trial)
    COUNTDOWN_REMINDERS_ENABLED: bool = True
    COUNTDOWN_REMINDER_DAYS: str = "4,3,2,1"
    COUNTDOWN_REMINDER_INTERVAL_MINUTES: int = 60

    # Verdict retention
    CASE_RETENTION_ENABLED: bool = True
    CASE_RETENTION_DAYS: int = 30
    CASE_RETENTION_INTERVAL_MINUTES: int = 60

    @field_validator(
        "TRIAL_SCHEDULER_INTERVAL_SECONDS",
        "WAR_ROOM_OPEN_OFFSET_MINUTES",
        "TRIAL_REMINDER_OFFSET_MINUTES",
        "TRIAL_SCHEDULER_LOOKBACK_HOURS",
        "TRIAL_SCHEDULER_DB_TIMEOUT_SECONDS",
        "COUNTDOWN_REMINDER_INTERVAL_MINUTES",
        "CASE_RETENTION_DAYS",
        "CASE_RETENTION_INTERVAL_MINUTES",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return ["http://localhost:3000"]

    @property
    def countdown_reminder_days_list(self) -> List[int]:
        """
        Parse comma-separated reminder days into a descending, de-duplicated list.
        Example env:
          COUNTDOWN_REMINDER_DAYS=7,3,1
        """
        out: List[int] = []
        for part in (self.COUNTDOWN_REMINDER_DAYS or "").split(","):
            part = part.strip()
            if not part:
                continue
            try:
                days = int(part)
            except ValueError:
                continue
            if days > 0 and days not in out:
                out.append(days)
        return sorted(out, reverse=True)


# Create settings instance
settings = Settings()
