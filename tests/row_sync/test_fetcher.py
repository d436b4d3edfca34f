"""
Tests for Row Fetcher
Covers: identifier quoting, empty batches, max_id, query parameters, error mapping
"""

from contextlib import contextmanager

import psycopg2
import pytest
from unittest.mock import MagicMock

from src.row_sync.errors import QueryError, SerializationError
from src.row_sync.fetcher import RowFetcher, table_identifier


@pytest.fixture
def cursor():
    cur = MagicMock()
    cur.description = [("id",), ("name",)]
    cur.fetchall.return_value = []
    return cur


@pytest.fixture
def pool(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()

    @contextmanager
    def connection():
        yield conn

    pool.connection.side_effect = connection
    return pool


@pytest.fixture
def fetcher(pool):
    return RowFetcher(pool, default_limit=1000)


class TestTableIdentifier:

    def test_plain(self):
        assert table_identifier("accounts").strings == ("accounts",)

    def test_default_schema(self):
        assert table_identifier("accounts", "public").strings == ("public", "accounts")

    def test_explicit_schema_wins(self):
        assert table_identifier("sales.orders", "public").strings == ("sales", "orders")

    @pytest.mark.parametrize("name", ["", "a..b", ".x", "a.b.c"])
    def test_invalid(self, name):
        with pytest.raises(QueryError):
            table_identifier(name)


class TestFetch:

    def test_empty_result(self, fetcher, cursor):
        batch = fetcher.fetch("accounts", 1500)
        assert batch.is_empty
        assert batch.max_id == 0
        assert batch.table_name == "accounts"

    def test_parameters(self, fetcher, cursor):
        fetcher.fetch("accounts", 120, limit=50)
        assert cursor.execute.call_args[0][1] == (120, 50)

    def test_default_limit(self, fetcher, cursor):
        fetcher.fetch("accounts", 0)
        assert cursor.execute.call_args[0][1] == (0, 1000)

    def test_rows_and_max_id(self, fetcher, cursor):
        cursor.fetchall.return_value = [(121, "a"), (122, "b"), (130, "c")]
        batch = fetcher.fetch("attendance", 120)
        assert len(batch) == 3
        assert batch.first_id == 121
        assert batch.max_id == 130
        assert batch.rows[0].get("name") == "a"

    def test_statement_timeout(self, pool, cursor):
        fetcher = RowFetcher(pool, query_timeout_ms=5000)
        fetcher.fetch("accounts", 0)
        first = cursor.execute.call_args_list[0][0]
        assert "statement_timeout" in first[0]
        assert first[1] == (5000,)

    def test_db_error(self, fetcher, cursor):
        cursor.execute.side_effect = psycopg2.ProgrammingError("relation does not exist")
        with pytest.raises(QueryError):
            fetcher.fetch("missing_table", 0)

    def test_missing_id_column(self, fetcher, cursor):
        cursor.description = [("attendance_id",), ("name",)]
        cursor.fetchall.return_value = [(1, "a")]
        with pytest.raises(QueryError, match="identity column"):
            fetcher.fetch("attendance", 0)

    def test_non_integer_id(self, fetcher, cursor):
        cursor.fetchall.return_value = [("abc", "a")]
        with pytest.raises(QueryError):
            fetcher.fetch("accounts", 0)

    def test_unsupported_value(self, fetcher, cursor):
        cursor.fetchall.return_value = [(1, object())]
        with pytest.raises(SerializationError):
            fetcher.fetch("accounts", 0)

    def test_invalid_limit(self, pool):
        with pytest.raises(ValueError):
            RowFetcher(pool, default_limit=0)
