"""Connection pool for PostgreSQL.

This module provides connection pooling using psycopg2.pool.ThreadedConnectionPool.
ThreadedConnectionPool fails immediately when every connection is in use, so
leases are counted here and callers wait on a condition variable, up to the
configured acquire timeout, for a connection to come back.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psycopg2
import psycopg2.extensions
from psycopg2 import pool as psycopg2_pool

from pgsource.database.endpoint import build_dsn
from pgsource.database.exceptions import (
    AcquisitionError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    PoolClosedError,
)
from pgsource.database.prepared_statements import (
    CachingConnection,
    PreparedStatementCache,
)
from pgsource.observability.context import ObservationContext
from pgsource.observability.probes import (
    ConnectionProbe,
    DefaultConnectionProbe,
)

if TYPE_CHECKING:
    from psycopg2.extensions import connection as PsycopgConnection

    from pgsource.settings import PoolSettings

ISOLATION_LEVELS = {
    "read_uncommitted": psycopg2.extensions.ISOLATION_LEVEL_READ_UNCOMMITTED,
    "read_committed": psycopg2.extensions.ISOLATION_LEVEL_READ_COMMITTED,
    "repeatable_read": psycopg2.extensions.ISOLATION_LEVEL_REPEATABLE_READ,
    "serializable": psycopg2.extensions.ISOLATION_LEVEL_SERIALIZABLE,
}


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time view of pool usage."""

    in_use: int
    max_connections: int
    closed: bool

    @property
    def available(self) -> int:
        return 0 if self.closed else self.max_connections - self.in_use


class ConnectionPool:
    """Thread-safe, bounded connection pool for PostgreSQL.

    Wraps psycopg2.pool.ThreadedConnectionPool. Every physical connection is
    a CachingConnection, configured once (autocommit, isolation level and
    prepared-statement cache) the first time it is leased.

    Attributes:
        _settings: Pool configuration settings
        _pool: The underlying ThreadedConnectionPool instance
        _probe: Observability probe for monitoring
        _available: Condition guarding the lease bookkeeping below
        _leased: Connections currently held by callers, keyed by id()
        _in_use: Reserved slots (leased plus in-flight checkouts)
    """

    def __init__(
        self,
        settings: PoolSettings,
        probe: ConnectionProbe | None = None,
    ):
        """Initialize the connection pool.

        Args:
            settings: Pool configuration settings
            probe: Optional observability probe

        Raises:
            ConfigurationError: If the endpoint or credentials are invalid.
            DatabaseConnectionError: If the initial connections cannot be opened.
        """
        self._settings = settings
        self._probe = probe or DefaultConnectionProbe(
            context=ObservationContext(
                component="connection_pool",
                endpoint=settings.connection_string,
            )
        )
        self._pool: psycopg2_pool.ThreadedConnectionPool | None = None
        self._available = threading.Condition()
        self._leased: dict[int, PsycopgConnection] = {}
        self._in_use = 0
        self._closed = False

        dsn = self._build_dsn()
        self._initialize_pool(dsn)

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def max_connections(self) -> int:
        return self._settings.pool_max_connections

    @property
    def closed(self) -> bool:
        return self._closed

    def _build_dsn(self) -> str:
        """Validate the configuration and render the connection URI."""
        try:
            if not self._settings.username:
                raise ConfigurationError("Database username is not set")
            if not self._settings.password.get_secret_value():
                raise ConfigurationError("Database password is not set")
            return build_dsn(self._settings)
        except ConfigurationError as e:
            self._probe.configuration_rejected(error=e)
            raise

    def _initialize_pool(self, dsn: str) -> None:
        """Initialize the ThreadedConnectionPool."""
        try:
            self._pool = psycopg2_pool.ThreadedConnectionPool(
                minconn=self._settings.pool_min_connections,
                maxconn=self._settings.pool_max_connections,
                dsn=dsn,
                connection_factory=CachingConnection,
                connect_timeout=self._settings.connect_timeout_seconds,
                application_name=self._settings.application_name,
            )
            self._probe.pool_initialized(
                min_conn=self._settings.pool_min_connections,
                max_conn=self._settings.pool_max_connections,
            )
        except psycopg2.Error as e:
            self._probe.pool_initialization_failed(error=e)
            raise DatabaseConnectionError(
                f"Failed to initialize connection pool: {e}"
            ) from e

    def _slot_free_or_closed(self) -> bool:
        return self._closed or self._in_use < self._settings.pool_max_connections

    def _reserve_slot(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Wait for a free slot and claim it.

        Returns:
            The underlying pool to check a connection out of.
        """
        timeout = self._settings.acquire_timeout_seconds
        with self._available:
            if not self._available.wait_for(
                self._slot_free_or_closed, timeout=timeout
            ):
                self._probe.acquisition_timed_out(
                    timeout=timeout,
                    max_conn=self._settings.pool_max_connections,
                )
                raise AcquisitionError(
                    f"Timed out after {timeout}s waiting for a free connection "
                    f"(max={self._settings.pool_max_connections})",
                    timeout=timeout,
                )
            if self._closed or self._pool is None:
                self._probe.acquisition_after_close()
                raise PoolClosedError("Connection pool is closed")
            self._in_use += 1
            return self._pool

    def _release_slot(self) -> int:
        with self._available:
            self._in_use -= 1
            self._available.notify()
            return self._in_use

    def get_connection(self) -> PsycopgConnection:
        """Lease a connection from the pool.

        Blocks for up to ``acquire_timeout_seconds`` while every connection
        is leased. The caller must hand the connection back with
        return_connection(), or use connection() instead.

        Returns:
            A configured psycopg2 connection.

        Raises:
            AcquisitionError: If no connection became free in time or a new
                connection could not be opened.
            PoolClosedError: If the pool has been closed.
        """
        pool = self._reserve_slot()
        try:
            conn = self._checkout(pool)
        except BaseException:
            self._release_slot()
            raise

        with self._available:
            if self._closed:
                # Closed while checking out; closeall() already closed conn.
                self._in_use -= 1
                self._available.notify()
                self._probe.acquisition_after_close()
                raise PoolClosedError("Connection pool is closed")
            self._leased[id(conn)] = conn
            in_use = self._in_use
        self._probe.connection_acquired_from_pool(in_use=in_use)
        return conn

    def _checkout(
        self, pool: psycopg2_pool.ThreadedConnectionPool
    ) -> PsycopgConnection:
        """Take a connection out of the underlying pool and configure it."""
        try:
            conn = pool.getconn()
            if conn.closed:
                self._probe.stale_connection_discarded()
                pool.putconn(conn, close=True)
                conn = pool.getconn()
        except psycopg2_pool.PoolError as e:
            if pool.closed:
                self._probe.acquisition_after_close()
                raise PoolClosedError("Connection pool is closed") from e
            self._probe.acquisition_failed(error=e)
            raise AcquisitionError(
                f"Pool exhausted, cannot get connection: {e}"
            ) from e
        except psycopg2.Error as e:
            self._probe.acquisition_failed(error=e)
            raise AcquisitionError(f"Failed to open connection: {e}") from e

        try:
            self._ensure_session_configured(conn)
        except psycopg2.Error as e:
            pool.putconn(conn, close=True)
            self._probe.acquisition_failed(error=e)
            raise AcquisitionError(f"Failed to configure connection: {e}") from e
        return conn

    def return_connection(self, conn: PsycopgConnection) -> None:
        """Return a connection to the pool.

        Connections this pool did not lease (or already took back) are
        ignored.

        Args:
            conn: The connection to return.
        """
        with self._available:
            leased = self._leased.pop(id(conn), None)
            pool = self._pool

        if leased is None:
            self._probe.connection_return_failed(
                error=DatabaseError("Connection is not leased from this pool")
            )
            return

        failure: Exception | None = None
        try:
            # A closed pool has already closed every connection it handed out.
            if pool is not None:
                pool.putconn(conn)
        except Exception as e:
            failure = e
        finally:
            in_use = self._release_slot()

        if failure is not None:
            self._probe.connection_return_failed(error=failure)
            # Don't raise - connection will be discarded
            return
        self._probe.connection_returned_to_pool(in_use=in_use)

    @contextmanager
    def connection(self) -> Iterator[PsycopgConnection]:
        """Lease a connection for the duration of a ``with`` block.

        The connection goes back to the pool on every exit path. An open
        transaction is rolled back by the pool on return, so commit inside
        the block.

        Usage:
            with pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        conn = self.get_connection()
        try:
            yield conn
        finally:
            self.return_connection(conn)

    def stats(self) -> PoolStats:
        """Snapshot of current pool usage."""
        with self._available:
            return PoolStats(
                in_use=self._in_use,
                max_connections=self._settings.pool_max_connections,
                closed=self._closed,
            )

    def close_all(self) -> None:
        """Close all connections in the pool.

        Threads waiting for a connection are woken and fail with
        PoolClosedError. Calling this more than once is harmless.
        """
        with self._available:
            if self._closed:
                return
            self._closed = True
            pool, self._pool = self._pool, None
            self._available.notify_all()

        if pool is not None:
            pool.closeall()
        self._probe.pool_closed()

    def _ensure_session_configured(self, conn: PsycopgConnection) -> None:
        """Ensure session settings are applied to the connection.

        Uses a connection-level flag to avoid redundant setup.
        """
        if getattr(conn, "session_configured", False):
            return

        self._configure_session(conn)
        conn.session_configured = True  # type: ignore[attr-defined]

    def _configure_session(self, conn: PsycopgConnection) -> None:
        """Apply autocommit, isolation level and the statement cache.

        Args:
            conn: The connection to configure
        """
        session: dict[str, object] = {"autocommit": self._settings.autocommit}
        if self._settings.isolation_level is not None:
            session["isolation_level"] = ISOLATION_LEVELS[
                self._settings.isolation_level
            ]
        conn.set_session(**session)

        if self._settings.statement_cache_active:
            conn.statement_cache = PreparedStatementCache(  # type: ignore[attr-defined]
                max_size=self._settings.prepared_statement_cache_size,
                sql_limit=self._settings.prepared_statement_cache_sql_limit,
                probe=self._probe,
            )
