"""
Base service implementation with session handling shared by all services.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import StoreUnavailableError
from ..utils.logger import get_logger


class SessionManagedService:
    """
    Service working on a session it was handed (request scope, tests).

    ``transaction()`` commits or rolls back; closing the session stays with
    whoever opened it.
    """

    def __init__(self, session: Session, logger: Optional[logging.Logger] = None):
        self.session = session
        self.logger = logger or get_logger()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on success, roll back on any exception.

        Usage:
            with service.transaction():
                store.put(...)
                audit.record(...)
        """
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreUnavailableError("Failed to commit transaction", cause=e) from e
        except Exception:
            self.session.rollback()
            raise
