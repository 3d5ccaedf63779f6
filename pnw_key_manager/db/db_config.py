from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import DatabaseConfig, get_config
from ..exceptions import ConfigurationError
from ..utils.logger import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()


class DatabaseManager:
    """
    Database connection manager that uses a Pydantic DatabaseConfig.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine)
        self.scoped_session = scoped_session(self.session_factory)

    @property
    def is_sqlite(self) -> bool:
        return self.config.connection_string.startswith("sqlite")

    def _create_engine(self) -> Engine:
        connection_string = self.config.connection_string
        if self.is_sqlite:
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            # In-memory databases live in one connection; share it across threads
            if ":memory:" in connection_string or connection_string == "sqlite://":
                kwargs["poolclass"] = StaticPool
            return create_engine(
                connection_string, echo=self.config.echo, hide_parameters=True, **kwargs
            )
        return create_engine(
            connection_string,
            echo=self.config.echo,
            hide_parameters=True,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        return self.scoped_session()

    def new_session(self) -> Session:
        """A session not bound to the thread-local registry."""
        return self.session_factory()

    def close_session(self, session: Optional[Session] = None) -> None:
        if session:
            session.close()
        else:
            self.scoped_session.remove()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_alliance_models import Alliance, AllianceManager  # noqa
    from .db_audit_models import AuditLog  # noqa
    from .db_rate_limit_models import RateLimitWindow  # noqa
    from .db_user_models import User  # noqa

    configure_mappers()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.

    Raises:
        ConfigurationError: If no database manager has been initialized
    """
    if _db_manager is None:
        raise ConfigurationError(
            "Database manager not initialized. Call initialize_db() first.",
            setting="database",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """
    Set the global database manager instance.

    This is primarily used for testing to inject a test database manager.
    """
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Initialize the global database manager and create missing tables.

    Args:
        config: Optional DatabaseConfig. If None, uses the application config.
    """
    global _db_manager

    if config is None:
        config = get_config().database

    get_logger().info("Initializing database", extra={"database": repr(config)})
    _db_manager = DatabaseManager(config)

    import_all_models()
    _db_manager.create_tables()

    return _db_manager


def close_db() -> None:
    """
    Close the database connections and dispose of the engine.
    """
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
