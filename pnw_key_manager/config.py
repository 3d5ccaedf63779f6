"""
Centralized configuration management for the PnW key manager.

Values default from environment variables and are validated with Pydantic.
Secrets such as the master encryption key live here and are handed to the
components that need them at construction time; business logic never reads
the environment on its own.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, Timeouts


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./pnw_key_manager.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=Timeouts.DATABASE_QUERY, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")

    def __repr__(self) -> str:
        """String representation without credentials embedded in the URL."""
        scheme = self.connection_string.split("://", 1)[0]
        return f"DatabaseConfig(scheme='{scheme}', pool_size={self.pool_size})"


class QueueConfig(BaseModel):
    """Azure Storage Queue configuration for structured log shipping."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default="logs-queue", description="Logs queue name")
    batch_size: int = Field(default=10, description="Log entries sent per batch")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SecurityConfig(BaseModel):
    """Master key and session settings."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value) or None,
        description="Master key used to derive per-key encryption keys",
        repr=False,
    )
    jwt_secret: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.JWT_SECRET.value) or None,
        description="HS256 secret used to verify session tokens",
        repr=False,
    )
    session_cookie_name: str = Field(default="pnw_session", description="Session cookie name")
    pbkdf2_iterations: int = Field(
        default=Limits.PBKDF2_ITERATIONS,
        ge=Limits.PBKDF2_ITERATIONS,
        description="PBKDF2 iterations for key derivation",
    )
    mask_visible_chars: int = Field(
        default=Limits.MASK_VISIBLE_CHARS, ge=0, description="Characters shown at each end"
    )


class PnWApiConfig(BaseModel):
    """Politics and War GraphQL API settings."""

    base_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.PNW_API_BASE_URL.value, "https://api.politicsandwar.com/graphql"
        ),
        description="GraphQL endpoint",
    )
    user_agent: str = Field(default="PnW-Alliance-Manager/1.0", description="User-Agent header")
    validation_timeout: float = Field(
        default=Timeouts.KEY_VALIDATION, gt=0, description="Key validation timeout (seconds)"
    )
    usage_timeout: float = Field(
        default=Timeouts.USAGE_CHECK, gt=0, description="Usage check timeout (seconds)"
    )
    min_key_length: int = Field(default=Limits.MIN_API_KEY_LENGTH, description="Minimum key length")
    default_max_requests: int = Field(
        default=Limits.DEFAULT_MAX_REQUESTS, description="Daily quota assumed when none reported"
    )


class RateLimitConfig(BaseModel):
    """Per-caller request rate limiting."""

    enabled: bool = Field(default=True, description="Enable request rate limiting")
    window_ms: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.RATE_LIMIT_WINDOW_MS.value, Limits.RATE_LIMIT_WINDOW_MS
        ),
        gt=0,
        description="Window length in milliseconds",
    )
    max_requests: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.RATE_LIMIT_MAX_REQUESTS.value, Limits.RATE_LIMIT_MAX_REQUESTS
        ),
        gt=0,
        description="Requests allowed per window",
    )


class FeatureFlags(BaseModel):
    """Feature flags for controlling runtime behavior."""

    enable_logs_queue: bool = Field(default=False, description="Ship logs to an Azure queue")
    enable_encryption_self_check: bool = Field(
        default=True, description="Round-trip the cipher at startup"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.DEBUG.value, "false").lower()
        == "true",
        description="Debug mode",
    )

    # Sub-configurations
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    pnw_api: PnWApiConfig = Field(default_factory=PnWApiConfig, description="PnW API configuration")
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig, description="Rate limit configuration"
    )
    features: FeatureFlags = Field(default_factory=FeatureFlags, description="Feature flags")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
