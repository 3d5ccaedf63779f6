"""
Constants and enums for the PnW key manager.

This module centralizes the magic strings and numeric thresholds used by the
credential lifecycle so the cipher, the validator and the services agree on them.
"""

from enum import Enum


class OwnerKind(str, Enum):
    """Record a linked API key belongs to."""

    USER = "user"
    ALLIANCE_MANAGER = "alliance_manager"


class CredentialAction(str, Enum):
    """Actions a caller can attempt on a linked key."""

    READ = "read"
    LINK = "link"
    UNLINK = "unlink"

    @property
    def is_mutating(self) -> bool:
        return self is not CredentialAction.READ


class ManagerRole(str, Enum):
    """Role of an alliance manager inside their alliance."""

    ADMIN = "admin"
    MANAGER = "manager"
    VIEWER = "viewer"


class SystemAdminLevel(str, Enum):
    """Levels of system-wide administrators."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"


class AuditAction(str, Enum):
    """Audit log action names."""

    API_KEY_LINKED = "api_key_linked"
    API_KEY_REMOVED = "api_key_removed"
    ALLIANCE_API_KEY_LINKED = "alliance_api_key_linked"
    ALLIANCE_API_KEY_REMOVED = "alliance_api_key_removed"


class AuditResource(str, Enum):
    """Resource types recorded in the audit log."""

    USER = "user"
    ALLIANCE_MANAGER = "alliance_manager"


class RateLimitType(str, Enum):
    """What a rate limit window is keyed on."""

    USER = "user"
    IP = "ip"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    ENCRYPTION_KEY = "ENCRYPTION_KEY"
    JWT_SECRET = "JWT_SECRET"
    PNW_API_BASE_URL = "PNW_API_BASE_URL"
    RATE_LIMIT_WINDOW_MS = "RATE_LIMIT_WINDOW_MS"
    RATE_LIMIT_MAX_REQUESTS = "RATE_LIMIT_MAX_REQUESTS"


# Numeric constants
class Limits:
    """Credential thresholds."""

    MIN_API_KEY_LENGTH = 20
    MAX_API_KEY_LENGTH = 200
    DEFAULT_MAX_REQUESTS = 2000
    NEAR_LIMIT_PERCENT = 80
    MASK_VISIBLE_CHARS = 4
    MASK_MIN_REDACTION = 4
    MASK_SHORT_WIDTH = 8
    PBKDF2_ITERATIONS = 100_000
    KEY_LENGTH = 32
    IV_LENGTH = 16
    SALT_LENGTH = 32
    TAG_LENGTH = 16
    RATE_LIMIT_WINDOW_MS = 900_000
    RATE_LIMIT_MAX_REQUESTS = 100


# Time-related constants (in seconds)
class Timeouts:
    """Upstream call timeouts in seconds."""

    KEY_VALIDATION = 10
    USAGE_CHECK = 5
    DATABASE_QUERY = 30
