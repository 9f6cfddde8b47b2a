# habitpods/config.py
import zoneinfo
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

class Settings(BaseSettings):
    # ── Database
    DATABASE_URL: str = "sqlite:///./habitpods.db"  # placeholder, the real value lives in .env

    # Default timezone for users without one (never used to schedule a goal)
    TZ_DEFAULT: str = "UTC"

    # Goal defaults
    DEFAULT_DEADLINE_TIME: str = "23:59"

    # Offline check-ins: how far a client timestamp may lag server time
    BACKFILL_WINDOW_HOURS: int = Field(6, ge=0)

    # Resync sweeper period
    RESYNC_INTERVAL_MINUTES: int = Field(60, ge=1)

    # Job consumer
    WORKER_ID: Optional[str] = None
    WORKER_CONCURRENCY: int = Field(5, ge=1)
    WORKER_POLL_SECONDS: int = 2
    WORKER_LOCK_TIMEOUT_MINUTES: int = 10
    WORKER_MAX_ATTEMPTS: int = Field(5, ge=1)

    # Retry backoff (linear, capped)
    QUEUE_REQUEUE_BASE_DELAY_SECONDS: int = 5
    QUEUE_REQUEUE_STEP_SECONDS: int = 10
    QUEUE_REQUEUE_MAX_DELAY_SECONDS: int = 300

    # Finished jobs are the dedup index; keep them longer than a day
    JOB_RETENTION_DAYS: int = Field(14, ge=2)

    # Notifications: "log" or "twilio"
    NOTIFIER_BACKEND: str = "log"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM: Optional[str] = None
    NOTIFY_MIN_SEND_GAP_SECONDS: float = 0.4

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    @field_validator("TZ_DEFAULT")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            zoneinfo.ZoneInfo(v)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {v}")
        return v

    @field_validator("NOTIFIER_BACKEND")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        v = (v or "log").strip().lower()
        if v not in ("log", "twilio"):
            raise ValueError("NOTIFIER_BACKEND must be log or twilio")
        return v


    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # ignore unexpected keys instead of erroring
    )

settings = Settings()
