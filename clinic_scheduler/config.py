"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    app_name: str = Field(default="Clinic Scheduler API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Document store
    store_backend: str = Field(
        default="sql",
        alias="STORE_BACKEND",
        description="Either 'sql' or 'memory'",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./clinic_scheduler.db",
        alias="DATABASE_URL",
    )
    appointments_collection: str = Field(default="appointments", alias="APPOINTMENTS_COLLECTION")

    # Redis (change feed mirror)
    redis_enabled: bool = Field(default=False, alias="REDIS_ENABLED")
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")
    redis_channel_prefix: str = Field(default="clinic:changes", alias="REDIS_CHANNEL_PREFIX")

    # Scheduling rules
    cancellation_cutoff_hours: int = Field(default=2, ge=0, alias="CANCELLATION_CUTOFF_HOURS")
    enforce_cancellation_cutoff: bool = Field(default=False, alias="ENFORCE_CANCELLATION_CUTOFF")
    default_time_slots_str: str = Field(
        default="8:30 AM,9:00 AM,9:30 AM,10:00 AM,2:00 PM,3:00 PM,4:00 PM",
        alias="DEFAULT_TIME_SLOTS",
    )

    @property
    def default_time_slots(self) -> list[str]:
        """Get bookable time slots as a list."""
        return [slot.strip() for slot in self.default_time_slots_str.split(",") if slot.strip()]

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
