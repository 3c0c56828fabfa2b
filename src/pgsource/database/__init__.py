"""Database infrastructure - pooled connection primitives."""

from pgsource.database.exceptions import (
    AcquisitionError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    PoolClosedError,
)

__all__ = [
    "AcquisitionError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "PoolClosedError",
]
