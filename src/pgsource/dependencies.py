"""Process-wide connection source.

Holds the one ConnectionSource shared by the whole process. Nothing happens
at import time: the pool is built by an explicit initialize() call, or on the
first get_connection(), using double-check locking so that concurrent first
callers end up sharing a single pool.

Code that can take the source as a parameter should do so; these accessors
exist for entry points and legacy call sites.
"""

from __future__ import annotations

import atexit
import threading
from typing import TYPE_CHECKING

from pgsource.database.connection_source import ConnectionSource
from pgsource.database.exceptions import ConfigurationError
from pgsource.settings import get_pool_settings

if TYPE_CHECKING:
    from psycopg2.extensions import connection as PsycopgConnection

    from pgsource.database.connection_pool import ConnectionPool
    from pgsource.observability.probes import ConnectionProbe
    from pgsource.settings import PoolSettings

# Module-level source instance (created on first use)
_source: ConnectionSource | None = None

# Thread lock for safe source initialization
_source_lock = threading.Lock()


def initialize(
    settings: PoolSettings | None = None,
    probe: ConnectionProbe | None = None,
) -> ConnectionSource:
    """Build the process-wide connection source (once).

    Args:
        settings: Pool settings; loaded from the environment when omitted
        probe: Optional observability probe for the pool

    Returns:
        The shared ConnectionSource.

    Raises:
        ConfigurationError: If the settings are invalid, or if the source was
            already initialized with different settings.
        DatabaseConnectionError: If the initial connections cannot be opened.
    """
    global _source
    source = _source
    if source is None:
        with _source_lock:
            # Double-check after acquiring lock
            if _source is None:
                _source = ConnectionSource.from_settings(
                    settings if settings is not None else get_pool_settings(),
                    probe=probe,
                )
            source = _source

    if settings is not None and settings != source.settings:
        raise ConfigurationError(
            "Connection source is already initialized with a different configuration"
        )
    return source


def get_connection_source() -> ConnectionSource:
    """Get the shared connection source, initializing it from the environment."""
    return initialize()


def get_connection() -> PsycopgConnection:
    """Lease a connection from the shared source.

    Raises:
        ConfigurationError: If the source cannot be initialized.
        AcquisitionError: If no connection became free in time.
        PoolClosedError: If the source has been closed.
    """
    return get_connection_source().get_connection()


def get_underlying_source() -> ConnectionPool:
    """Get the pool behind the shared source."""
    return get_connection_source().get_underlying_source()


def close_connection_source() -> None:
    """Close the shared pool.

    The closed source is kept, so later acquisitions fail with
    PoolClosedError instead of silently building a new pool.
    """
    with _source_lock:
        source = _source
    if source is not None:
        source.close()


def reset_connection_source() -> None:
    """Close and forget the shared source so the next call builds a new one.

    Intended for test isolation and controlled restarts.
    """
    global _source
    with _source_lock:
        source, _source = _source, None
    if source is not None:
        source.close()


atexit.register(close_connection_source)
