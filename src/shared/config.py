"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for the Synapse Feed Cache.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Database connection pool settings
- Outbound feed fetcher settings
- API and logging configuration
"""
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseSettings(BaseSettings):
    """Relational store configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Primary database URL (takes precedence if set)
    database_url: Optional[str] = None

    # Individual database components (used if DATABASE_URL not set)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "synapse_feeds"
    db_user: str = "synapse"
    db_password: str = "synapse_dev_password"

    # Connection pool settings, sized for hundreds of concurrent requests
    db_pool_size: int = 100
    db_max_overflow: int = 400
    db_pool_timeout: float = 30.0
    db_pool_recycle: int = 3600
    db_connect_timeout: float = 10.0
    db_echo: bool = False

    @field_validator("db_port")
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("db_pool_size")
    @classmethod
    def validate_pool_size(cls, v):
        if v < 1:
            raise ValueError("Pool size must be at least 1")
        return v

    @field_validator("db_max_overflow")
    @classmethod
    def validate_max_overflow(cls, v):
        if v < 0:
            raise ValueError("Max overflow cannot be negative")
        return v

    def get_database_url(self) -> str:
        """Get the complete database URL."""
        if self.database_url:
            return self.database_url

        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


class FetcherSettings(BaseSettings):
    """Outbound feed fetch settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    feed_fetch_timeout: float = 10.0
    feed_user_agent: str = "Mozilla/5.0 (compatible; RSSReader/1.0)"
    feed_max_connections: int = 100

    @field_validator("feed_fetch_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Fetch timeout must be positive")
        return v


class APISettings(BaseSettings):
    """API configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    api_version: str = "v1"
    api_title: str = "Synapse Feed Cache API"

    default_page_size: int = 30
    max_page_size: int = 100

    # CORS settings
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


class MonitoringSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "console"

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "Synapse Feed Cache"
    app_version: str = "1.0.0"

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    api: APISettings = Field(default_factory=APISettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("debug")
    @classmethod
    def validate_debug_in_production(cls, v, info):
        if info.data.get("environment") == Environment.PRODUCTION and v:
            raise ValueError("Debug mode should not be enabled in production")
        return v

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    return Settings()


def get_config_summary(settings: Optional[Settings] = None) -> dict:
    """
    Get a summary of the current configuration (without sensitive data).

    Returns:
        Dictionary with configuration summary
    """
    settings = settings or get_settings()
    return {
        "environment": settings.environment.value,
        "debug": settings.debug,
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "database": {
            "host": settings.database.db_host,
            "port": settings.database.db_port,
            "name": settings.database.db_name,
            "pool_size": settings.database.db_pool_size,
            "max_overflow": settings.database.db_max_overflow,
        },
        "fetcher": {
            "timeout": settings.fetcher.feed_fetch_timeout,
            "user_agent": settings.fetcher.feed_user_agent,
        },
        "monitoring": {
            "log_level": settings.monitoring.log_level.value,
            "log_format": settings.monitoring.log_format,
        },
    }
