"""
Centralized configuration management.

All application configuration is loaded and validated here.
"""
import os
import logging
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Application settings with validation."""

    # Response limits
    max_records_per_request: int = Field(default=50000, ge=100, le=1000000, description="Maximum records accepted per request")

    # Rate limiting
    rate_limit_per_minute: int = Field(default=10, ge=1, le=1000, description="Rate limit per minute per IP")

    # Request timeout
    request_timeout_seconds: int = Field(default=300, ge=1, le=3600, description="Request timeout in seconds")

    # CORS
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        description="Comma-separated list of allowed CORS origins"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Chart analysis
    max_suggestions: int = Field(default=15, ge=1, le=100, description="Maximum chart suggestions per analysis")
    meaningful_column_limit: int = Field(default=20, ge=1, le=200, description="Top columns used for generic chart generation")
    analysis_cache_ttl_seconds: int = Field(default=3600, ge=0, le=86400, description="TTL of cached analysis results")
    analysis_log_limit: int = Field(default=100, ge=1, le=10000, description="Analysis log entries kept per dataset")

    # KoboToolbox
    kobo_base_url: str = Field(default="https://kf.kobotoolbox.org", description="KoboToolbox server URL")
    kobo_timeout_seconds: int = Field(default=30, ge=1, le=600, description="Timeout for a single Kobo API call")
    sync_max_concurrency: int = Field(default=3, ge=1, le=20, description="Simultaneous submission fetches")
    auto_sync_scheduler_enabled: bool = Field(default=True, description="Run the auto-sync scheduler in the background")
    auto_sync_poll_seconds: int = Field(default=60, ge=1, le=3600, description="How often due auto-syncs are looked for")
    auto_sync_retry_minutes: int = Field(default=10, ge=1, le=1440, description="Delay before retrying a failed auto-sync")

    # Storage
    storage_backend: str = Field(default="memory", description="Storage backend: memory or redis")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v.lower() not in ("memory", "redis"):
            raise ValueError(f"STORAGE_BACKEND must be 'memory' or 'redis', got '{v}'")
        return v.lower()

    @field_validator('kobo_base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            max_records_per_request=int(os.getenv("MAX_RECORDS_PER_REQUEST", "50000")),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "10")),
            request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "300")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            max_suggestions=int(os.getenv("MAX_SUGGESTIONS", "15")),
            meaningful_column_limit=int(os.getenv("MEANINGFUL_COLUMN_LIMIT", "20")),
            analysis_cache_ttl_seconds=int(os.getenv("ANALYSIS_CACHE_TTL_SECONDS", "3600")),
            analysis_log_limit=int(os.getenv("ANALYSIS_LOG_LIMIT", "100")),
            kobo_base_url=os.getenv("KOBO_BASE_URL", "https://kf.kobotoolbox.org"),
            kobo_timeout_seconds=int(os.getenv("KOBO_TIMEOUT_SECONDS", "30")),
            sync_max_concurrency=int(os.getenv("SYNC_MAX_CONCURRENCY", "3")),
            auto_sync_scheduler_enabled=os.getenv("AUTO_SYNC_SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes"),
            auto_sync_poll_seconds=int(os.getenv("AUTO_SYNC_POLL_SECONDS", "60")),
            auto_sync_retry_minutes=int(os.getenv("AUTO_SYNC_RETRY_MINUTES", "10")),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory"),
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info("Configuration loaded and validated successfully")
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
