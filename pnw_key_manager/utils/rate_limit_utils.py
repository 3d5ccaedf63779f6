"""
Fixed-window request rate limiting backed by the ``rate_limits`` table.

Windows are aligned to the epoch, so every worker computes the same window for
the same instant. The counter is bumped with one atomic ``UPDATE`` statement;
the row is inserted on first use, and a concurrent insert that loses the unique
constraint race falls back to the update.
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import RateLimitConfig
from ..constants import RateLimitType
from ..db.db_base import utc_now
from ..db.db_rate_limit_models import RateLimitWindow
from ..exceptions import RateLimitExceededError, StoreUnavailableError

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def window_bounds(now: datetime, window_ms: int) -> Tuple[datetime, datetime]:
    """Start and end of the fixed window containing ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    elapsed_ms = int((now - _EPOCH).total_seconds() * 1000)
    start = _EPOCH + timedelta(milliseconds=elapsed_ms - elapsed_ms % window_ms)
    return start, start + timedelta(milliseconds=window_ms)


def _increment(session: Session, identifier: str, limit_type: str, start: datetime) -> int:
    result = session.execute(
        update(RateLimitWindow)
        .where(
            RateLimitWindow.identifier == identifier,
            RateLimitWindow.type == limit_type,
            RateLimitWindow.window_start == start,
        )
        .values(requests=RateLimitWindow.requests + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _current_count(session: Session, identifier: str, limit_type: str, start: datetime) -> int:
    return session.execute(
        select(RateLimitWindow.requests).where(
            RateLimitWindow.identifier == identifier,
            RateLimitWindow.type == limit_type,
            RateLimitWindow.window_start == start,
        )
    ).scalar_one()


def check_rate_limit(
    session: Session,
    identifier: str,
    limit_type: RateLimitType,
    config: RateLimitConfig,
    now: Optional[datetime] = None,
) -> int:
    """
    Count one request against the caller's current window.

    Commits on ``session``; pass a session dedicated to rate limiting so the
    counter survives a failing request.

    Args:
        session: SQLAlchemy session
        identifier: User id or client address
        limit_type: What the identifier is
        config: Window length and quota
        now: Current time, for tests

    Returns:
        Requests left in the window after this one

    Raises:
        RateLimitExceededError: If the quota of the window is used up
        StoreUnavailableError: If the counter cannot be updated
    """
    now = now or utc_now()
    start, end = window_bounds(now, config.window_ms)
    kind = limit_type.value

    try:
        if not _increment(session, identifier, kind, start):
            try:
                session.add(
                    RateLimitWindow(
                        identifier=identifier,
                        type=kind,
                        requests=1,
                        window_start=start,
                        window_end=end,
                        max_requests=config.max_requests,
                        window_ms=config.window_ms,
                    )
                )
                session.flush()
            except IntegrityError:
                # Another worker created the window first
                session.rollback()
                _increment(session, identifier, kind, start)
        count = _current_count(session, identifier, kind, start)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreUnavailableError(
            "Rate limit counter unavailable", cause=e, limit_type=kind
        ) from e

    if count > config.max_requests:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        retry_after = max(1, math.ceil((end - now).total_seconds()))
        raise RateLimitExceededError(retry_after, limit_type=kind)

    return config.max_requests - count
