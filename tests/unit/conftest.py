"""Unit test fixtures with mocked dependencies."""

import itertools
import os
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from pgsource.dependencies import reset_connection_source
from pgsource.settings import PoolSettings, get_pool_settings

THREADED_POOL = "pgsource.database.connection_pool.psycopg2_pool.ThreadedConnectionPool"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep PGSOURCE_DB_* variables, .env files and the singleton out of tests."""
    for name in list(os.environ):
        if name.startswith("PGSOURCE_DB_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    get_pool_settings.cache_clear()
    yield
    reset_connection_source()
    get_pool_settings.cache_clear()


@pytest.fixture
def pool_settings():
    """Provide valid pool settings."""
    return PoolSettings(
        endpoint="db:5432/test",
        username="u",
        password=SecretStr("p"),
        prepared_statement_cache_size=250,
        pool_min_connections=1,
        pool_max_connections=2,
        acquire_timeout_seconds=2.0,
    )


def make_connection():
    """Provide a mocked psycopg2 connection that is open and unconfigured."""
    conn = MagicMock()
    conn.closed = False
    conn.session_configured = False
    conn.statement_cache = None
    return conn


@pytest.fixture
def threaded_pool():
    """Patch ThreadedConnectionPool; getconn hands out fresh mock connections."""
    with patch(THREADED_POOL) as mock_pool_class:
        mock_pool_instance = MagicMock()
        mock_pool_instance.closed = False
        connections = (make_connection() for _ in itertools.count())
        mock_pool_instance.getconn.side_effect = lambda: next(connections)
        mock_pool_class.return_value = mock_pool_instance
        yield mock_pool_class


@pytest.fixture
def new_connection():
    """Provide a factory for open, unconfigured mock connections."""
    return make_connection
