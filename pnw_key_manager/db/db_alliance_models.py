"""
Alliance and alliance-manager models.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from ..constants import ManagerRole
from .db_base import JSON, EncryptedText, TimestampMixin, UUIDMixin
from .db_config import Base


class Alliance(Base, UUIDMixin, TimestampMixin):
    """An in-game alliance registered with the dashboard."""

    __tablename__ = "alliances"

    pnw_alliance_id = Column(Integer, nullable=False, unique=True)
    alliance_name = Column(String(200), nullable=False)
    route_slug = Column(String(100), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    managers = relationship("AllianceManager", back_populates="alliance")


class AllianceManager(Base, UUIDMixin, TimestampMixin):
    """Assignment of a user as manager of an alliance, with its own key."""

    __tablename__ = "alliance_managers"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    alliance_id = Column(
        String(36), ForeignKey("alliances.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(32), nullable=False, default=ManagerRole.VIEWER.value)
    permissions = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    manager_api_key = Column(EncryptedText, nullable=True)
    manager_api_key_fingerprint = Column(String(64), nullable=True, index=True)
    key_nation_id = Column(Integer, nullable=True)
    key_nation_name = Column(String(100), nullable=True)

    user = relationship("User", back_populates="alliance_managers")
    alliance = relationship("Alliance", back_populates="managers")

    __table_args__ = (
        Index("ix_alliance_manager_assignment", "user_id", "alliance_id", unique=True),
    )
