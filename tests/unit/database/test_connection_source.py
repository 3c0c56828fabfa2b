"""Unit tests for the ConnectionSource facade."""

from unittest.mock import MagicMock

import pytest

from pgsource.database.connection_pool import ConnectionPool
from pgsource.database.connection_source import ConnectionSource
from pgsource.database.exceptions import PoolClosedError


@pytest.fixture
def mock_pool():
    """Create mock connection pool."""
    return MagicMock(spec=ConnectionPool)


class TestConnectionSource:
    """Tests for delegation to the injected pool."""

    def test_source_requires_pool(self, mock_pool):
        source = ConnectionSource(mock_pool)
        assert source.get_underlying_source() is mock_pool

    def test_gets_connection_from_pool(self, mock_pool):
        """Should delegate to pool.get_connection()."""
        mock_conn = MagicMock()
        mock_pool.get_connection.return_value = mock_conn

        source = ConnectionSource(mock_pool)

        assert source.get_connection() is mock_conn
        mock_pool.get_connection.assert_called_once()

    def test_returns_connection_to_pool(self, mock_pool):
        """Should delegate to pool.return_connection()."""
        mock_conn = MagicMock()

        ConnectionSource(mock_pool).return_connection(mock_conn)

        mock_pool.return_connection.assert_called_once_with(mock_conn)

    def test_propagates_acquisition_errors(self, mock_pool):
        mock_pool.get_connection.side_effect = PoolClosedError("closed")

        with pytest.raises(PoolClosedError):
            ConnectionSource(mock_pool).get_connection()

    def test_close_closes_pool(self, mock_pool):
        ConnectionSource(mock_pool).close()
        mock_pool.close_all.assert_called_once()


class TestFromSettings:
    """Tests for building a source from settings."""

    def test_scenario_initialize_lease_and_inspect(self, pool_settings, threaded_pool):
        """db:5432/test with u/p and cache size 250 yields a working source."""
        source = ConnectionSource.from_settings(pool_settings)

        conn = source.get_connection()
        underlying = source.get_underlying_source()

        assert conn is not None
        assert isinstance(underlying, ConnectionPool)
        assert underlying.stats().in_use == 1
        assert conn.statement_cache.max_size == 250
        assert source.settings is pool_settings

    def test_connection_context_manager_releases(self, pool_settings, threaded_pool):
        source = ConnectionSource.from_settings(pool_settings)

        with source.connection() as conn:
            assert source.stats().in_use == 1

        threaded_pool.return_value.putconn.assert_called_once_with(conn)
        assert source.stats().in_use == 0

    def test_closed_source_rejects_leases(self, pool_settings, threaded_pool):
        source = ConnectionSource.from_settings(pool_settings)
        source.close()

        assert source.closed is True
        with pytest.raises(PoolClosedError):
            source.get_connection()
