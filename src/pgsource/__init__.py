"""Process-wide PostgreSQL connection pool access."""

from pgsource.database.connection_pool import ConnectionPool, PoolStats
from pgsource.database.connection_source import ConnectionSource
from pgsource.database.exceptions import (
    AcquisitionError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    PoolClosedError,
)
from pgsource.dependencies import (
    close_connection_source,
    get_connection,
    get_connection_source,
    get_underlying_source,
    initialize,
    reset_connection_source,
)
from pgsource.settings import PoolSettings, get_pool_settings, load_pool_settings
from pgsource.version import __version__

__all__ = [
    "AcquisitionError",
    "ConfigurationError",
    "ConnectionPool",
    "ConnectionSource",
    "DatabaseConnectionError",
    "DatabaseError",
    "PoolClosedError",
    "PoolSettings",
    "PoolStats",
    "__version__",
    "close_connection_source",
    "get_connection",
    "get_connection_source",
    "get_pool_settings",
    "get_underlying_source",
    "initialize",
    "load_pool_settings",
    "reset_connection_source",
]
