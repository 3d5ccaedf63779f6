"""
Audit log model.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Column, Index, String

from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class AuditLog(Base, UUIDMixin, TimestampMixin):
    """One credential lifecycle event. Never holds a key, masked or not."""

    __tablename__ = "audit_logs"

    user_id = Column(String(36), nullable=False, index=True)
    alliance_id = Column(String(36), nullable=True)
    action = Column(String(64), nullable=False)
    resource = Column(String(64), nullable=False)
    resource_id = Column(String(36), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    __table_args__ = (Index("ix_audit_resource", "resource", "resource_id"),)
