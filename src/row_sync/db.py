"""
PostgreSQL Connection Pool
Shared, thread-safe connection handle passed to the fetcher, offset store and schema export
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
import psycopg2.pool
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .config import DatabaseConfig

logger = logging.getLogger(__name__)


class DatabasePool:
    """Thin wrapper over psycopg2's ThreadedConnectionPool"""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    def connect(self) -> None:
        """Open the pool, retrying transient connection failures"""
        if self._pool is not None and not self._pool.closed:
            return

        @retry(
            stop=stop_after_attempt(max(self.config.connect_retry_attempts, 1)),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(psycopg2.OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _open() -> psycopg2.pool.ThreadedConnectionPool:
            return psycopg2.pool.ThreadedConnectionPool(
                self.config.min_connections,
                self.config.max_connections,
                host=self.config.host,
                port=self.config.port,
                dbname=self.config.database,
                user=self.config.username,
                password=self.config.password,
                connect_timeout=self.config.connect_timeout_seconds,
            )

        self._pool = _open()
        logger.info(
            f"Connected to PostgreSQL at {self.config.host}:{self.config.port}/{self.config.database} "
            f"(pool {self.config.min_connections}-{self.config.max_connections})"
        )

    def disconnect(self) -> None:
        if self._pool is not None and not self._pool.closed:
            self._pool.closeall()
            logger.info("Disconnected from PostgreSQL")
        self._pool = None

    @property
    def connected(self) -> bool:
        return self._pool is not None and not self._pool.closed

    @contextmanager
    def connection(self) -> Iterator["psycopg2.extensions.connection"]:
        """Borrow a connection; commit on success, roll back on error.

        Broken connections are discarded instead of being returned to the pool.
        """
        if self._pool is None or self._pool.closed:
            raise psycopg2.InterfaceError("Connection pool is not open")

        conn = self._pool.getconn()
        broken = False
        try:
            yield conn
            conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            broken = True
            raise
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=broken or bool(conn.closed))

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
