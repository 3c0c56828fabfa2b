"""Integration test fixtures for pool tests.

The pool fixtures require a running PostgreSQL instance reachable via
PGSOURCE_DB_* variables. embedded_postgres_dsn starts its own server instead.
"""

from collections.abc import Generator
import os

import pytest
from pydantic import SecretStr

from pgsource.database.connection_source import ConnectionSource
from pgsource.settings import PoolSettings


@pytest.fixture(scope="session")
def integration_pool_settings() -> PoolSettings:
    """Pool settings for integration tests.

    Override with environment variables:
        PGSOURCE_DB_ENDPOINT, PGSOURCE_DB_USERNAME, PGSOURCE_DB_PASSWORD
    """
    return PoolSettings(
        endpoint=os.getenv("PGSOURCE_DB_ENDPOINT", "localhost:5432/pgsource"),
        username=os.getenv("PGSOURCE_DB_USERNAME", "pgsource"),
        password=SecretStr(os.getenv("PGSOURCE_DB_PASSWORD", "pgsource_dev_password")),
        pool_min_connections=1,
        pool_max_connections=2,
        acquire_timeout_seconds=5.0,
        prepared_statement_cache_size=2,
    )


@pytest.fixture
def source(
    integration_pool_settings: PoolSettings,
) -> Generator[ConnectionSource, None, None]:
    """Provide a connected source, closed after each test."""
    source = ConnectionSource.from_settings(integration_pool_settings)
    yield source
    source.close()


@pytest.fixture(scope="session")
def embedded_postgres_dsn(tmp_path_factory) -> Generator[str, None, None]:
    """Start a throwaway PostgreSQL server for the session.

    The server runs from the pgserver wheel, listens on a unix socket under
    a temporary directory and is removed afterwards.
    """
    pgserver = pytest.importorskip("pgserver")
    server = pgserver.get_server(
        tmp_path_factory.mktemp("pgdata"), cleanup_mode="delete"
    )
    yield server.get_uri()
    server.cleanup()
