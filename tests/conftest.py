"""
Test fixtures for the key manager.

This module provides shared test fixtures including database setup,
configuration, the cipher and a stubbed PnW API client.
"""

import pytest
from sqlalchemy.orm import Session

from pnw_key_manager.config import (
    AppConfig,
    DatabaseConfig,
    PnWApiConfig,
    RateLimitConfig,
    SecurityConfig,
    reset_config,
    set_config,
)
from pnw_key_manager.db import DatabaseManager, import_all_models, set_db_manager
from pnw_key_manager.db.db_config import Base
from pnw_key_manager.exceptions import clear_correlation_id
from pnw_key_manager.utils.encryption_utils import CredentialCipher
from pnw_key_manager.utils.logger import reset_logging
from pnw_key_manager.utils.pnw_api import PnWApiClient
from tests.fixtures.factories import configure_factories
from tests.fixtures.pnw_payloads import StubPnWTransport

TEST_MASTER_KEY = "test-master-key-do-not-use-in-production"
TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef-0123"
TEST_API_KEY = "abcdef0123456789ABCDEF01"  # 24 characters


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """SQLite in-memory database shared across threads through a static pool."""
    return DatabaseConfig(connection_string="sqlite://")


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create the database manager with all models registered."""
    import_all_models()
    manager = DatabaseManager(db_config)
    set_db_manager(manager)

    yield manager

    set_db_manager(None)
    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test for isolation.
    """
    Base.metadata.create_all(db_manager.engine)
    session = db_manager.get_session()
    configure_factories(session)

    yield session

    session.rollback()
    db_manager.close_session()
    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture
def app_config(db_config: DatabaseConfig) -> AppConfig:
    return AppConfig(
        environment="test",
        database=db_config,
        security=SecurityConfig(encryption_key=TEST_MASTER_KEY, jwt_secret=TEST_JWT_SECRET),
        pnw_api=PnWApiConfig(base_url="https://pnw.test/graphql"),
        rate_limit=RateLimitConfig(enabled=True, window_ms=60_000, max_requests=100),
    )


@pytest.fixture(autouse=True)
def isolated_config(app_config: AppConfig):
    """Install the test config globally and reset process-wide state afterwards."""
    set_config(app_config)
    yield app_config
    reset_config()
    reset_logging()
    clear_correlation_id()


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(TEST_MASTER_KEY)


@pytest.fixture
def transport() -> StubPnWTransport:
    return StubPnWTransport()


@pytest.fixture
def pnw_client(app_config: AppConfig, transport: StubPnWTransport) -> PnWApiClient:
    return PnWApiClient(app_config.pnw_api, http_session=transport)


@pytest.fixture
def api_key() -> str:
    return TEST_API_KEY
