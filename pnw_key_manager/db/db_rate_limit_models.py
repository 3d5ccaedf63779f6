"""
Request rate-limit window model.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Column, DateTime, Index, Integer, String

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class RateLimitWindow(Base, UUIDMixin, TimestampMixin):
    """Request counter for one identifier in one fixed window."""

    __tablename__ = "rate_limits"

    identifier = Column(String(100), nullable=False)
    type = Column(String(16), nullable=False)
    requests = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime(timezone=True), nullable=False)
    window_end = Column(DateTime(timezone=True), nullable=False)
    max_requests = Column(Integer, nullable=False)
    window_ms = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_rate_limit_window", "identifier", "type", "window_start", unique=True),
    )
