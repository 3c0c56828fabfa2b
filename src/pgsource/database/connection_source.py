"""Connection source facade.

ConnectionSource is the object data-access code depends on: it leases
connections and exposes the pool for frameworks that manage acquisition
themselves. Build it by injecting a ConnectionPool, or from settings.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from pgsource.database.connection_pool import ConnectionPool, PoolStats

if TYPE_CHECKING:
    from psycopg2.extensions import connection as PsycopgConnection

    from pgsource.observability.probes import ConnectionProbe
    from pgsource.settings import PoolSettings


class ConnectionSource:
    """Access point for pooled PostgreSQL connections.

    Delegates every call to a single ConnectionPool; it adds no locking or
    retries of its own.
    """

    def __init__(self, pool: ConnectionPool):
        """Initialize the connection source.

        Args:
            pool: Connection pool (required)
        """
        self._pool = pool

    @classmethod
    def from_settings(
        cls,
        settings: PoolSettings,
        probe: ConnectionProbe | None = None,
    ) -> ConnectionSource:
        """Build the pool described by ``settings`` and wrap it.

        Raises:
            ConfigurationError: If the endpoint or credentials are invalid.
            DatabaseConnectionError: If the initial connections cannot be opened.
        """
        return cls(ConnectionPool(settings, probe=probe))

    @property
    def settings(self) -> PoolSettings:
        return self._pool.settings

    @property
    def closed(self) -> bool:
        return self._pool.closed

    def get_connection(self) -> PsycopgConnection:
        """Get a connection from the pool.

        Returns:
            A psycopg2 connection from the pool.

        Raises:
            AcquisitionError: If no connection became free in time.
            PoolClosedError: If the source has been closed.
        """
        return self._pool.get_connection()

    def return_connection(self, conn: PsycopgConnection) -> None:
        """Return a connection to the pool.

        Args:
            conn: The connection to return
        """
        self._pool.return_connection(conn)

    @contextmanager
    def connection(self) -> Iterator[PsycopgConnection]:
        """Lease a connection that is returned when the block exits."""
        with self._pool.connection() as conn:
            yield conn

    def get_underlying_source(self) -> ConnectionPool:
        """Return the pool itself, for frameworks that lease on their own.

        The pool stays owned by this source; do not close it directly.
        """
        return self._pool

    def stats(self) -> PoolStats:
        return self._pool.stats()

    def close(self) -> None:
        """Close the pool. Later acquisitions raise PoolClosedError."""
        self._pool.close_all()
