"""Server-side prepared statement caching for psycopg2 connections.

psycopg2 interpolates parameters on the client and sends plain SQL text, so
the server plans every execution from scratch. Connections opened by the pool
use PreparingCursor, which turns repeated statements into PREPARE/EXECUTE
pairs and remembers the statement names in a bounded LRU per connection.

A statement is only prepared when the result cannot differ from what plain
psycopg2 would return:

* a leading SELECT/INSERT/UPDATE/DELETE/WITH/VALUES keyword, SQL text no
  longer than the configured limit, and positional ``%s`` parameters (or
  none);
* every parameter is a scalar whose server type is known, so PREPARE can
  declare the same type psycopg2's literal would have had. Sequences,
  mappings and adapted objects are sent the normal way;
* the server accepts the PREPARE. Statements it rejects are remembered and
  run through the regular psycopg2 code path from then on.

Outside autocommit the PREPARE runs under a savepoint, so a rejected
statement leaves the caller's transaction intact.
"""

from __future__ import annotations

import datetime
import decimal
import itertools
import math
import re
from collections import OrderedDict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import psycopg2
import psycopg2.errors
import psycopg2.extensions

if TYPE_CHECKING:
    from pgsource.observability.probes import ConnectionProbe

__all__ = [
    "CachingConnection",
    "PreparedStatementCache",
    "PreparingCursor",
    "parameter_types",
    "to_server_sql",
]

STATEMENT_PREFIX = "pgsource"
SAVEPOINT_NAME = "pgsource_prepare"

_PREPARABLE_RE = re.compile(
    r"^\s*(select|insert|update|delete|with|values)\b", re.IGNORECASE
)
_PLACEHOLDER_RE = re.compile(r"%[s%]")

_INT4_RANGE = range(-(2**31), 2**31)
_INT8_RANGE = range(-(2**63), 2**63)

# Errors raised by PREPARE for statements the server cannot plan with the
# declared types. Connection-level failures are not in this list.
_REJECTED_PREPARE_ERRORS = (
    psycopg2.ProgrammingError,
    psycopg2.DataError,
    psycopg2.NotSupportedError,
)

StatementKey = tuple[str, tuple[str, ...]]


def to_server_sql(query: str, params: Any) -> tuple[str, int] | None:
    """Rewrite a psycopg2 query into the text sent to PREPARE.

    ``%s`` placeholders become ``$1..$n`` and ``%%`` becomes ``%``. When
    ``params`` is None psycopg2 does no interpolation, so the query is used
    as is.

    Returns:
        ``(server_sql, placeholder_count)``, or None when the query cannot
        be prepared (named parameters, stray ``%`` sequences, or a
        placeholder count that does not match the parameters).
    """
    if params is None:
        return query, 0
    if not isinstance(params, (tuple, list)):
        return None

    count = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal count
        if match.group(0) == "%%":
            return "%"
        count += 1
        return f"${count}"

    # Anything other than %s or %% left over means named parameters or a
    # format psycopg2 itself would reject.
    if "%" in _PLACEHOLDER_RE.sub("", query):
        return None

    server_sql = _PLACEHOLDER_RE.sub(_replace, query)
    if count != len(params):
        return None
    return server_sql, count


def _parameter_type(value: Any) -> str | None:
    kind = type(value)
    # psycopg2 quotes strings and renders NULL without a cast; the server
    # infers their type from context, and so does an "unknown" parameter.
    if value is None or kind is str:
        return "unknown"
    if kind is bool:
        return "boolean"
    if kind is int:
        if value in _INT4_RANGE:
            return "integer"
        if value in _INT8_RANGE:
            return "bigint"
        return "numeric"
    if kind is float:
        # Finite floats are rendered as bare numeric literals.
        return "numeric" if math.isfinite(value) else "double precision"
    if kind is decimal.Decimal:
        return "numeric"
    if kind in (bytes, bytearray, memoryview):
        return "bytea"
    if kind is datetime.datetime:
        return "timestamptz" if value.tzinfo is not None else "timestamp"
    if kind is datetime.date:
        return "date"
    if kind is datetime.time:
        return "timetz" if value.tzinfo is not None else "time"
    if kind is datetime.timedelta:
        return "interval"
    return None


def parameter_types(params: Any) -> tuple[str, ...] | None:
    """Name the server type of each parameter as psycopg2 would send it.

    Returns:
        One type name per parameter, or None if any parameter is adapted to
        something other than a plain scalar literal (tuples, lists, dicts,
        custom adapters).
    """
    if params is None:
        return ()
    types = []
    for value in params:
        type_name = _parameter_type(value)
        if type_name is None:
            return None
        types.append(type_name)
    return tuple(types)


class PreparedStatementCache:
    """LRU map of statements to server-side prepared statement names.

    Statements are keyed by their server SQL text together with the declared
    parameter types, since the same text can be planned differently for
    different types. One cache belongs to one physical connection; prepared
    statements live for the lifetime of the server session.

    Attributes:
        max_size: Maximum number of statements kept prepared
        sql_limit: Longest SQL text (in characters) eligible for caching
        probe: Optional observability probe
    """

    def __init__(
        self,
        max_size: int,
        sql_limit: int,
        probe: ConnectionProbe | None = None,
    ):
        self.max_size = max_size
        self.sql_limit = sql_limit
        self.probe = probe
        self._statements: OrderedDict[StatementKey, str] = OrderedDict()
        self._rejected: OrderedDict[StatementKey, None] = OrderedDict()
        self._names = itertools.count(1)

    def __len__(self) -> int:
        return len(self._statements)

    def __contains__(self, key: object) -> bool:
        return key in self._statements

    def accepts(self, query: object) -> bool:
        """Return True when ``query`` is eligible for caching."""
        return (
            self.max_size > 0
            and isinstance(query, str)
            and len(query) <= self.sql_limit
            and _PREPARABLE_RE.match(query) is not None
        )

    def is_rejected(self, key: StatementKey) -> bool:
        """Return True if the server refused to prepare ``key`` before."""
        return key in self._rejected

    def get(self, key: StatementKey) -> str | None:
        """Look up a statement name, marking it most recently used."""
        name = self._statements.get(key)
        if name is not None:
            self._statements.move_to_end(key)
        return name

    def next_name(self) -> str:
        """Reserve a fresh statement name."""
        return f"{STATEMENT_PREFIX}_{next(self._names)}"

    def add(self, key: StatementKey, name: str) -> str | None:
        """Remember a prepared statement.

        Returns:
            The name of the least recently used statement if the cache
            overflowed, so the caller can DEALLOCATE it; otherwise None.
        """
        self._statements[key] = name
        self._statements.move_to_end(key)
        if len(self._statements) > self.max_size:
            _, evicted = self._statements.popitem(last=False)
            return evicted
        return None

    def reject(self, key: StatementKey) -> None:
        """Remember that ``key`` must run without PREPARE."""
        self._rejected[key] = None
        self._rejected.move_to_end(key)
        if len(self._rejected) > self.max_size:
            self._rejected.popitem(last=False)

    def discard(self, key: StatementKey) -> str | None:
        """Forget a statement, returning its name if it was cached."""
        return self._statements.pop(key, None)

    def clear(self) -> None:
        """Forget every statement (the server session is gone)."""
        self._statements.clear()
        self._rejected.clear()

    def execute(
        self,
        run: Callable[[str, Any], Any],
        query: Any,
        params: Any = None,
        in_transaction: bool = False,
    ) -> Any:
        """Execute ``query`` through a cached prepared statement if possible.

        Args:
            run: The plain cursor ``execute`` used to talk to the server
            query: SQL as passed to ``cursor.execute``
            params: Parameters as passed to ``cursor.execute``
            in_transaction: True when the connection is not in autocommit,
                so a failed PREPARE must be rolled back to a savepoint

        Returns:
            Whatever ``run`` returns for the final statement.
        """
        if not self.accepts(query):
            return run(query, params)

        rewritten = to_server_sql(query, params)
        if rewritten is None:
            return run(query, params)
        server_sql, count = rewritten

        types = parameter_types(params)
        if types is None:
            return run(query, params)

        key = (server_sql, types)
        if self.is_rejected(key):
            return run(query, params)

        name = self.get(key)
        if name is None:
            name = self._prepare(run, key, in_transaction)
            if name is None:
                return run(query, params)

        if count:
            execute_sql = f"EXECUTE {name} ({', '.join(['%s'] * count)})"
        else:
            execute_sql = f"EXECUTE {name}"

        try:
            return run(execute_sql, params if count else None)
        except psycopg2.errors.InvalidSqlStatementName:
            # Someone ran DEALLOCATE/DISCARD behind our back.
            self.discard(key)
            raise

    def _prepare(
        self,
        run: Callable[[str, Any], Any],
        key: StatementKey,
        in_transaction: bool,
    ) -> str | None:
        server_sql, types = key
        name = self.next_name()
        signature = f" ({', '.join(types)})" if types else ""

        if in_transaction:
            run(f"SAVEPOINT {SAVEPOINT_NAME}", None)
        try:
            run(f"PREPARE {name}{signature} AS {server_sql}", None)
        except _REJECTED_PREPARE_ERRORS as e:
            if in_transaction:
                run(f"ROLLBACK TO SAVEPOINT {SAVEPOINT_NAME}", None)
                run(f"RELEASE SAVEPOINT {SAVEPOINT_NAME}", None)
            self.reject(key)
            if self.probe is not None:
                self.probe.prepared_statement_rejected(error=e)
            return None
        if in_transaction:
            run(f"RELEASE SAVEPOINT {SAVEPOINT_NAME}", None)

        if self.probe is not None:
            self.probe.prepared_statement_created(name)

        evicted = self.add(key, name)
        if evicted is not None:
            run(f"DEALLOCATE {evicted}", None)
            if self.probe is not None:
                self.probe.prepared_statement_deallocated(evicted)
        return name


class PreparingCursor(psycopg2.extensions.cursor):
    """Cursor that executes cacheable statements through PREPARE/EXECUTE.

    Falls back to plain ``execute`` for named (server-side) cursors and
    connections without a statement cache.
    """

    def execute(self, query, vars=None):
        cache: PreparedStatementCache | None = getattr(
            self.connection, "statement_cache", None
        )
        if cache is None or self.name is not None:
            return super().execute(query, vars)
        return cache.execute(
            super().execute,
            query,
            vars,
            in_transaction=not self.connection.autocommit,
        )


class CachingConnection(psycopg2.extensions.connection):
    """psycopg2 connection that creates PreparingCursor by default.

    The pool attaches a PreparedStatementCache on first lease; until then
    (or when caching is disabled) cursors behave like plain psycopg2 ones.
    """

    def __init__(self, dsn, *args, **kwargs):
        super().__init__(dsn, *args, **kwargs)
        self.cursor_factory = PreparingCursor
        self.statement_cache: PreparedStatementCache | None = None
        self.session_configured = False

    def close(self):
        if self.statement_cache is not None:
            self.statement_cache.clear()
        return super().close()
