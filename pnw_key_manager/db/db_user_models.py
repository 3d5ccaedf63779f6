"""
Dashboard user model.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from .db_base import JSON, EncryptedText, TimestampMixin, UUIDMixin
from .db_config import Base


class User(Base, UUIDMixin, TimestampMixin):
    """Discord-authenticated dashboard user with an optional personal key."""

    __tablename__ = "users"

    discord_id = Column(String(32), nullable=False, unique=True, index=True)
    discord_username = Column(String(100), nullable=False)

    # Personal API key (encrypted) and the nation it resolved to
    pnw_api_key = Column(EncryptedText, nullable=True)
    pnw_api_key_fingerprint = Column(String(64), nullable=True, index=True)
    pnw_nation_id = Column(Integer, nullable=True)
    pnw_nation_name = Column(String(100), nullable=True)

    is_system_admin = Column(Boolean, nullable=False, default=False)
    system_admin_level = Column(String(32), nullable=True)
    system_admin_permissions = Column(JSON, nullable=True)

    alliance_managers = relationship(
        "AllianceManager", back_populates="user", cascade="all, delete-orphan"
    )
