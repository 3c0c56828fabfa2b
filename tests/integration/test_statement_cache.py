"""Statement cache tests against a real server.

Each query runs once through a plain psycopg2 connection and once through a
CachingConnection; the results must be identical whether the statement ends
up prepared or falls back to plain execution.

Run with: pytest -m embedded_postgres
Requires: pgserver (installed with the test extra)
"""

import datetime
import decimal

import psycopg2
import pytest

from pgsource.database.prepared_statements import (
    CachingConnection,
    PreparedStatementCache,
)

pytestmark = pytest.mark.embedded_postgres

QUERIES = [
    ("SELECT %s", (42,)),
    ("SELECT %s", ("42",)),
    ("SELECT %s", (None,)),
    ("SELECT %s + %s", (1, 2)),
    ("SELECT %s", (2**40,)),
    ("SELECT %s * 2", (1.5,)),
    ("SELECT %s", (decimal.Decimal("2.50"),)),
    ("SELECT %s, NOT %s", (True, False)),
    ("SELECT length(%s)", (b"\x00\x01\x02",)),
    ("SELECT upper(%s) || 'x'", ("abc",)),
    ("SELECT repeat('a', %s)", (3,)),
    ("SELECT %s + interval '1 day'", (datetime.datetime(2024, 1, 2, 3, 4, 5),)),
    ("SELECT %s - 1", (datetime.date(2024, 1, 2),)),
    ("SELECT interval %s", ("1 day",)),
    ("SELECT 1 WHERE 2 IN %s", ((1, 2, 3),)),
    ("SELECT 2 = ANY(%s)", ([1, 2, 3],)),
    ("SELECT 'a%%' LIKE %s", ("a%",)),
]


@pytest.fixture
def plain_conn(embedded_postgres_dsn):
    conn = psycopg2.connect(embedded_postgres_dsn)
    conn.autocommit = True
    yield conn
    conn.close()


def caching_connection(dsn, autocommit):
    conn = psycopg2.connect(dsn, connection_factory=CachingConnection)
    conn.autocommit = autocommit
    conn.statement_cache = PreparedStatementCache(max_size=250, sql_limit=2048)
    return conn


@pytest.fixture(params=[True, False], ids=["autocommit", "transaction"])
def caching_conn(request, embedded_postgres_dsn):
    conn = caching_connection(embedded_postgres_dsn, autocommit=request.param)
    yield conn
    conn.close()


@pytest.fixture
def transaction_conn(embedded_postgres_dsn):
    conn = caching_connection(embedded_postgres_dsn, autocommit=False)
    yield conn
    conn.close()


def fetch(conn, query, params):
    with conn.cursor() as cursor:
        cursor.execute(query, params)
        return cursor.fetchall()


class TestCachedResultsMatchPlainPsycopg2:
    """Cached execution returns what plain psycopg2 returns."""

    @pytest.mark.parametrize(("query", "params"), QUERIES)
    def test_same_result(self, plain_conn, caching_conn, query, params):
        expected = fetch(plain_conn, query, params)

        # Twice: the first run prepares, the second reuses the statement.
        assert fetch(caching_conn, query, params) == expected
        assert fetch(caching_conn, query, params) == expected

    def test_typed_parameters_are_prepared(self, caching_conn):
        assert fetch(caching_conn, "SELECT %s + %s", (1, 2)) == [(3,)]
        assert fetch(caching_conn, "SELECT %s", (42,)) == [(42,)]

        cache = caching_conn.statement_cache
        assert ("SELECT $1 + $2", ("integer", "integer")) in cache
        assert ("SELECT $1", ("integer",)) in cache

    def test_sequence_parameters_are_never_prepared(self, caching_conn):
        fetch(caching_conn, "SELECT 1 WHERE 2 IN %s", ((1, 2, 3),))
        fetch(caching_conn, "SELECT 2 = ANY(%s)", ([1, 2, 3],))

        assert len(caching_conn.statement_cache) == 0


class TestRefusedPrepare:
    """A statement the server will not prepare runs the plain way."""

    def test_refused_prepare_keeps_open_transaction_usable(self, transaction_conn):
        with transaction_conn.cursor() as cursor:
            cursor.execute("CREATE TEMP TABLE items (id int)")
            cursor.execute("INSERT INTO items VALUES (%s)", (1,))

            # A typed literal accepts a string but not a parameter.
            cursor.execute("SELECT interval %s", ("1 day",))
            assert cursor.fetchone() == (datetime.timedelta(days=1),)

            cursor.execute("SELECT count(*) FROM items")
            assert cursor.fetchone() == (1,)

        assert transaction_conn.statement_cache.is_rejected(
            ("SELECT interval $1", ("unknown",))
        )
        transaction_conn.rollback()

    def test_refused_prepare_in_autocommit(self, embedded_postgres_dsn):
        conn = caching_connection(embedded_postgres_dsn, autocommit=True)
        try:
            assert fetch(conn, "SELECT date %s", ("2024-01-02",)) == [
                (datetime.date(2024, 1, 2),)
            ]
            assert len(conn.statement_cache) == 0
        finally:
            conn.close()
