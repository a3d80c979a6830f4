"""Configuration management for the property confirmation service.

All configuration is loaded from environment variables and/or .env file.
Delivery defaults to dry-run and manual hand-off when not set.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root detection
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = PROJECT_ROOT / ".env"

# Absolute path to the default database (never changes regardless of CWD)
DATABASE_FILE = PROJECT_ROOT / "property_confirmations.db"
ABSOLUTE_DATABASE_URL = f"sqlite:///{DATABASE_FILE.as_posix()}"

DEV_JWT_SECRET = "dev-secret-change-me"
DELIVERY_METHODS = {"manual", "whatsapp", "sms"}


def _resolve_database_url(url: str) -> str:
    """
    Convert relative SQLite paths to absolute paths based on PROJECT_ROOT.

    In-memory URLs and non-SQLite URLs are returned unchanged.
    """
    if not url.startswith("sqlite:///"):
        return url

    path_part = url.replace("sqlite:///", "")
    if path_part in ("", ":memory:"):
        return url

    if path_part.startswith("./") or (not path_part.startswith("/") and ":" not in path_part):
        if path_part.startswith("./"):
            path_part = path_part[2:]
        absolute_path = PROJECT_ROOT / path_part
        return f"sqlite:///{absolute_path.as_posix()}"

    return url


class Settings(BaseSettings):
    """
    Runtime configuration powered by environment variables and .env overrides.

    All settings can be configured via:
    1. Environment variables (highest priority)
    2. .env file in project root (loaded automatically)
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default=ABSOLUTE_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy connection string.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Confirmation workflow
    # -------------------------------------------------------------------------
    public_base_url: str = Field(
        default="http://localhost:3000",
        alias="PUBLIC_BASE_URL",
        description="Prefix used when building owner confirmation URLs.",
    )
    confirmation_token_ttl_days: int = Field(default=30, alias="CONFIRMATION_TOKEN_TTL_DAYS", ge=1)
    staleness_threshold_days: int = Field(
        default=15,
        alias="STALENESS_THRESHOLD_DAYS",
        ge=1,
        description="Age after which a status/price confirmation counts as stale.",
    )
    submission_timeout_seconds: float = Field(
        default=5.0, alias="SUBMISSION_TIMEOUT_SECONDS", gt=0
    )
    pending_overdue_grace_days: int = Field(
        default=3,
        alias="PENDING_OVERDUE_GRACE_DAYS",
        ge=0,
        description="Days a pending record may sit past scheduled_for before the sweep fails it.",
    )
    default_delivery_method: str = Field(default="manual", alias="DEFAULT_DELIVERY_METHOD")
    schedule_lock_seconds: int = Field(default=900, alias="SCHEDULE_LOCK_SECONDS", ge=1)

    # -------------------------------------------------------------------------
    # Twilio
    # -------------------------------------------------------------------------
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: Optional[str] = Field(default=None, alias="TWILIO_FROM_NUMBER")
    twilio_whatsapp_from: Optional[str] = Field(default=None, alias="TWILIO_WHATSAPP_FROM")
    twilio_max_messages_per_second: float = Field(
        default=1.0, alias="TWILIO_MAX_MESSAGES_PER_SECOND", gt=0
    )
    twilio_debug: bool = Field(
        default=False, alias="TWILIO_DEBUG", description="Enable detailed Twilio debug logging"
    )
    twilio_status_callback_url: Optional[str] = Field(
        default=None, alias="TWILIO_STATUS_CALLBACK_URL", description="Webhook URL for delivery status"
    )
    default_phone_region: str = Field(default="BR", alias="DEFAULT_PHONE_REGION")
    delivery_timeout_seconds: float = Field(default=10.0, alias="DELIVERY_TIMEOUT_SECONDS", gt=0)

    # -------------------------------------------------------------------------
    # Staff authentication
    # -------------------------------------------------------------------------
    jwt_secret_key: str = Field(default=DEV_JWT_SECRET, alias="JWT_SECRET_KEY")
    jwt_access_token_expire_minutes: int = Field(
        default=60, alias="JWT_ACCESS_TOKEN_EXPIRE_MINUTES", ge=1
    )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------
    scheduler_monthly_day: int = Field(default=1, alias="SCHEDULER_MONTHLY_DAY", ge=1, le=28)
    scheduler_daily_hour: int = Field(default=9, alias="SCHEDULER_DAILY_HOUR", ge=0, le=23)
    scheduler_tenants: str = Field(
        default="",
        alias="SCHEDULER_TENANTS",
        description="Comma-separated tenant ids processed by the cron jobs.",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    dry_run: bool = Field(default=True, alias="DRY_RUN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"
    environment: str = Field(default="local", alias="ENVIRONMENT")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log format is valid."""
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower

    @field_validator("default_delivery_method")
    @classmethod
    def validate_delivery_method(cls, v: str) -> str:
        lower = v.lower()
        if lower not in DELIVERY_METHODS:
            raise ValueError(f"default_delivery_method must be one of {sorted(DELIVERY_METHODS)}")
        return lower

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_twilio_config(self) -> "Settings":
        """Require Twilio credentials when production actually sends messages."""
        if (
            not self.dry_run
            and self.environment == "production"
            and self.default_delivery_method != "manual"
        ):
            if not all([self.twilio_account_sid, self.twilio_auth_token]):
                raise ValueError("Twilio credentials required in production mode")
        return self

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        if self.environment == "production" and self.jwt_secret_key == DEV_JWT_SECRET:
            raise ValueError("JWT_SECRET_KEY must be set in production mode")
        return self

    @model_validator(mode="after")
    def resolve_database_url(self) -> "Settings":
        """Convert relative SQLite paths to absolute paths."""
        self.database_url = _resolve_database_url(self.database_url)
        return self

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    def is_twilio_enabled(self) -> bool:
        """Check if Twilio is configured."""
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    def get_scheduler_tenants(self) -> List[str]:
        """Tenant ids the time-triggered jobs iterate over."""
        return [t.strip() for t in self.scheduler_tenants.split(",") if t.strip()]

    def get_enabled_services(self) -> list[str]:
        """Get list of enabled external services."""
        services = []
        if self.is_twilio_enabled():
            services.append("twilio")
        return services


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached. To reload settings,
    call `get_settings.cache_clear()` first.

    Returns:
        Settings object with all configuration.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Clear settings cache and reload from environment.

    Useful for testing or after modifying .env file.
    """
    get_settings.cache_clear()
    return get_settings()
