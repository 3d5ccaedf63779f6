"""
SQLAlchemy models for the key manager.

This module provides a common entry point for all models.
"""

from .db_base import JSON, EncryptedText, TimestampMixin, UUIDMixin, utc_now
from .db_config import (
    Base,
    DatabaseManager,
    close_db,
    get_db_manager,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_alliance_models import Alliance, AllianceManager
from .db_audit_models import AuditLog
from .db_rate_limit_models import RateLimitWindow
from .db_user_models import User

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "EncryptedText",
    "TimestampMixin",
    "UUIDMixin",
    "utc_now",
    # Configuration
    "DatabaseManager",
    "import_all_models",
    "initialize_db",
    "get_db_manager",
    "set_db_manager",
    "close_db",
    # Models
    "Alliance",
    "AllianceManager",
    "AuditLog",
    "RateLimitWindow",
    "User",
]
