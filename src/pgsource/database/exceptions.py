"""Database-specific exceptions for the connection source."""


class DatabaseError(Exception):
    """Base exception for database operations."""

    pass


class ConfigurationError(DatabaseError):
    """Raised when connection parameters are malformed or missing.

    Fatal at initialization; startup should abort.
    """

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the initial connections to the server cannot be opened."""

    pass


class AcquisitionError(DatabaseError):
    """Raised when a connection cannot be leased from the pool.

    Covers timeouts while the pool is saturated and failures to open a new
    physical connection. Callers may retry or back off.
    """

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class PoolClosedError(DatabaseError):
    """Raised when a connection is requested after the pool was shut down."""

    pass
