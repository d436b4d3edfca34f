"""
Tests for PostgreSQL Connection Pool
Covers: connect retry, commit/rollback, broken connection disposal
"""

import psycopg2
import pytest
from unittest.mock import MagicMock, patch

from src.row_sync.config import DatabaseConfig
from src.row_sync.db import DatabasePool


@pytest.fixture
def db_config():
    return DatabaseConfig(host="localhost", database="test_db", connect_retry_attempts=2)


@pytest.fixture
def conn():
    c = MagicMock()
    c.closed = 0
    return c


@pytest.fixture
def pool(db_config, conn):
    with patch("src.row_sync.db.psycopg2.pool.ThreadedConnectionPool") as mock_pool_cls:
        mock_pool_cls.return_value.closed = False
        mock_pool_cls.return_value.getconn.return_value = conn
        p = DatabasePool(db_config)
        p.connect()
        yield p


class TestConnect:

    def test_connected(self, pool):
        assert pool.connected

    @patch("src.row_sync.db.psycopg2.pool.ThreadedConnectionPool")
    def test_gives_up_after_attempts(self, mock_pool_cls, db_config):
        mock_pool_cls.side_effect = psycopg2.OperationalError("refused")
        db_config.connect_retry_attempts = 1
        with pytest.raises(psycopg2.OperationalError):
            DatabasePool(db_config).connect()
        assert mock_pool_cls.call_count == 1

    def test_connection_requires_open_pool(self, db_config):
        with pytest.raises(psycopg2.InterfaceError):
            with DatabasePool(db_config).connection():
                pass

    def test_disconnect(self, pool):
        inner = pool._pool
        pool.disconnect()
        inner.closeall.assert_called_once()
        assert not pool.connected


class TestConnection:

    def test_commit_on_success(self, pool, conn):
        with pool.connection() as c:
            assert c is conn
        conn.commit.assert_called_once()
        pool._pool.putconn.assert_called_once_with(conn, close=False)

    def test_rollback_on_error(self, pool, conn):
        with pytest.raises(psycopg2.ProgrammingError):
            with pool.connection():
                raise psycopg2.ProgrammingError("syntax")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool._pool.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_discarded(self, pool, conn):
        with pytest.raises(psycopg2.OperationalError):
            with pool.connection():
                raise psycopg2.OperationalError("server closed the connection")
        pool._pool.putconn.assert_called_once_with(conn, close=True)
