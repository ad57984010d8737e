"""Application configuration."""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.scheduling.eligibility import ReschedulePolicy
from app.scheduling.models import NotificationChannel


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Scheduling API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, ge=1, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, ge=0, alias="DB_MAX_OVERFLOW")
    db_pool_recycle_seconds: int = Field(default=3600, alias="DB_POOL_RECYCLE_SECONDS")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str | None = Field(default=None, alias="REDIS_USERNAME")
    redis_password: str | None = Field(default=None, alias="REDIS_PASSWORD")

    # JWT issued by the external auth provider
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Scheduling
    facility_timezone: str = Field(
        default="UTC",
        alias="FACILITY_TIMEZONE",
        description="IANA zone appointment wall-clock times are expressed in",
    )
    reschedule_max_count: int = Field(default=3, ge=0, alias="RESCHEDULE_MAX_COUNT")
    reschedule_min_hours_before: int = Field(default=24, ge=0, alias="RESCHEDULE_MIN_HOURS_BEFORE")
    reschedule_requires_reason: bool = Field(default=True, alias="RESCHEDULE_REQUIRES_REASON")
    notify_patient_on_reschedule: bool = Field(default=True, alias="NOTIFY_PATIENT_ON_RESCHEDULE")
    default_notification_channels_str: str = Field(
        default="email",
        alias="DEFAULT_NOTIFICATION_CHANNELS",
    )
    default_slot_duration_minutes: int = Field(
        default=30, ge=5, le=480, alias="DEFAULT_SLOT_DURATION_MINUTES"
    )
    patient_cancel_min_hours: int = Field(default=24, ge=0, alias="PATIENT_CANCEL_MIN_HOURS")

    @property
    def default_notification_channels(self) -> list[NotificationChannel]:
        """Get default notification channels as a list."""
        return [
            NotificationChannel(channel.strip().lower())
            for channel in self.default_notification_channels_str.split(",")
            if channel.strip()
        ]

    @property
    def facility_zone(self) -> ZoneInfo:
        """Get the facility timezone."""
        return ZoneInfo(self.facility_timezone)

    # Slot locks
    slot_lock_backend: Literal["redis", "local"] = Field(
        default="redis",
        alias="SLOT_LOCK_BACKEND",
        description="'redis' for multi-process deployments, 'local' for a single process",
    )
    slot_lock_timeout_seconds: float = Field(default=10.0, gt=0, alias="SLOT_LOCK_TIMEOUT_SECONDS")
    slot_lock_wait_seconds: float = Field(default=5.0, ge=0, alias="SLOT_LOCK_WAIT_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def reschedule_policy(self) -> ReschedulePolicy:
        """Build the tenant-wide reschedule policy from settings."""
        return ReschedulePolicy(
            max_reschedules_per_appointment=self.reschedule_max_count,
            min_hours_before_appointment=self.reschedule_min_hours_before,
            requires_reason=self.reschedule_requires_reason,
            notify_patient=self.notify_patient_on_reschedule,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
