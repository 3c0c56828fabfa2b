"""Domain probes for connection pool observability.

Domain probes provide a high-level instrumentation API oriented around
domain semantics, keeping pool code clean and testable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from pgsource.observability.context import ObservationContext


class ConnectionProbe(Protocol):
    """Domain probe for connection pool observability.

    This probe captures domain-significant events related to pooled
    connections without exposing logging implementation details.
    """

    def pool_initialized(self, min_conn: int, max_conn: int) -> None:
        """Record that connection pool was initialized."""
        ...

    def pool_initialization_failed(self, error: Exception) -> None:
        """Record that pool initialization failed."""
        ...

    def configuration_rejected(self, error: Exception) -> None:
        """Record that the pool configuration failed validation."""
        ...

    def connection_acquired_from_pool(self, in_use: int) -> None:
        """Record that a connection was acquired from the pool."""
        ...

    def acquisition_timed_out(self, timeout: float, max_conn: int) -> None:
        """Record that no connection became free within the timeout."""
        ...

    def acquisition_failed(self, error: Exception) -> None:
        """Record that the pool could not hand out a connection."""
        ...

    def acquisition_after_close(self) -> None:
        """Record that a connection was requested from a closed pool."""
        ...

    def connection_returned_to_pool(self, in_use: int) -> None:
        """Record that a connection was returned to the pool."""
        ...

    def connection_return_failed(self, error: Exception) -> None:
        """Record that returning connection to pool failed."""
        ...

    def stale_connection_discarded(self) -> None:
        """Record that a closed connection was found in the pool and dropped."""
        ...

    def pool_closed(self) -> None:
        """Record that the connection pool was closed."""
        ...

    def prepared_statement_created(self, name: str) -> None:
        """Record that a server-side prepared statement was created."""
        ...

    def prepared_statement_deallocated(self, name: str) -> None:
        """Record that a cached prepared statement was evicted."""
        ...

    def prepared_statement_rejected(self, error: Exception) -> None:
        """Record that the server refused to prepare a statement."""
        ...

    def with_context(self, context: ObservationContext) -> ConnectionProbe:
        """Create a new probe with observation context bound."""
        ...


class DefaultConnectionProbe:
    """Default implementation of ConnectionProbe using structlog.

    Supports observation context for including pool-scoped metadata
    with all log events.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger | None = None,
        context: ObservationContext | None = None,
    ):
        self._logger = logger or structlog.get_logger()
        self._context = context

    def _get_context_kwargs(self) -> dict[str, Any]:
        """Get context metadata as kwargs for logging."""
        if self._context is None:
            return {}
        return self._context.as_dict()

    def with_context(self, context: ObservationContext) -> DefaultConnectionProbe:
        """Create a new probe with observation context bound."""
        return DefaultConnectionProbe(logger=self._logger, context=context)

    def pool_initialized(self, min_conn: int, max_conn: int) -> None:
        """Record that connection pool was initialized."""
        self._logger.info(
            "connection_pool_initialized",
            min_connections=min_conn,
            max_connections=max_conn,
            **self._get_context_kwargs(),
        )

    def pool_initialization_failed(self, error: Exception) -> None:
        """Record that pool initialization failed."""
        self._logger.error(
            "connection_pool_initialization_failed",
            error=str(error),
            **self._get_context_kwargs(),
        )

    def configuration_rejected(self, error: Exception) -> None:
        """Record that the pool configuration failed validation."""
        self._logger.error(
            "connection_pool_configuration_rejected",
            error=str(error),
            **self._get_context_kwargs(),
        )

    def connection_acquired_from_pool(self, in_use: int) -> None:
        """Record that a connection was acquired from the pool."""
        self._logger.debug(
            "connection_acquired_from_pool",
            in_use=in_use,
            **self._get_context_kwargs(),
        )

    def acquisition_timed_out(self, timeout: float, max_conn: int) -> None:
        """Record that no connection became free within the timeout."""
        self._logger.warning(
            "connection_acquisition_timed_out",
            timeout_seconds=timeout,
            max_connections=max_conn,
            **self._get_context_kwargs(),
        )

    def acquisition_failed(self, error: Exception) -> None:
        """Record that the pool could not hand out a connection."""
        self._logger.error(
            "connection_acquisition_failed",
            error=str(error),
            **self._get_context_kwargs(),
        )

    def acquisition_after_close(self) -> None:
        """Record that a connection was requested from a closed pool."""
        self._logger.error(
            "connection_acquisition_after_close",
            **self._get_context_kwargs(),
        )

    def connection_returned_to_pool(self, in_use: int) -> None:
        """Record that a connection was returned to the pool."""
        self._logger.debug(
            "connection_returned_to_pool",
            in_use=in_use,
            **self._get_context_kwargs(),
        )

    def connection_return_failed(self, error: Exception) -> None:
        """Record that returning connection to pool failed."""
        self._logger.error(
            "connection_return_failed",
            error=str(error),
            **self._get_context_kwargs(),
        )

    def stale_connection_discarded(self) -> None:
        """Record that a closed connection was found in the pool and dropped."""
        self._logger.warning(
            "stale_connection_discarded",
            **self._get_context_kwargs(),
        )

    def pool_closed(self) -> None:
        """Record that the connection pool was closed."""
        self._logger.info(
            "connection_pool_closed",
            **self._get_context_kwargs(),
        )

    def prepared_statement_created(self, name: str) -> None:
        """Record that a server-side prepared statement was created."""
        self._logger.debug(
            "prepared_statement_created",
            statement=name,
            **self._get_context_kwargs(),
        )

    def prepared_statement_deallocated(self, name: str) -> None:
        """Record that a cached prepared statement was evicted."""
        self._logger.debug(
            "prepared_statement_deallocated",
            statement=name,
            **self._get_context_kwargs(),
        )

    def prepared_statement_rejected(self, error: Exception) -> None:
        """Record that the server refused to prepare a statement."""
        self._logger.debug(
            "prepared_statement_rejected",
            error=str(error),
            **self._get_context_kwargs(),
        )
