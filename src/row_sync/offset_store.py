"""
Offset Store
Durable per-table high-water marks kept in the tracking table
"""

import logging
from typing import List

import psycopg2
from psycopg2 import sql

from .db import DatabasePool
from .errors import PersistenceError
from .models import TrackingEntry

logger = logging.getLogger(__name__)

CREATE_TRACKING_TABLE = """
    CREATE TABLE IF NOT EXISTS {table} (
        table_name VARCHAR(255) PRIMARY KEY,
        last_sent_id BIGINT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""

# GREATEST keeps the stored offset non-decreasing even if a stale writer commits
UPSERT_OFFSET = """
    INSERT INTO {table} AS t (table_name, last_sent_id, updated_at)
    VALUES (%s, %s, NOW())
    ON CONFLICT (table_name)
    DO UPDATE SET last_sent_id = GREATEST(t.last_sent_id, EXCLUDED.last_sent_id),
                  updated_at = EXCLUDED.updated_at
    RETURNING last_sent_id
"""

SELECT_OFFSET = "SELECT last_sent_id FROM {table} WHERE table_name = %s"

SELECT_ALL = "SELECT table_name, last_sent_id FROM {table} ORDER BY table_name"


class OffsetStore:
    """Maps table name -> last replicated identity value"""

    def __init__(self, pool: DatabasePool, tracking_table: str = "tracking_table"):
        self.pool = pool
        self.tracking_table = tracking_table
        self._table_ident = sql.Identifier(*tracking_table.split("."))

    def _query(self, template: str) -> sql.Composed:
        return sql.SQL(template).format(table=self._table_ident)

    def ensure_table(self) -> None:
        """Create the tracking table if absent. Idempotent."""
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._query(CREATE_TRACKING_TABLE))
        except psycopg2.Error as e:
            raise PersistenceError(f"Cannot create tracking table {self.tracking_table}: {e}") from e
        logger.info(f"Tracking table {self.tracking_table} ready")

    def get(self, table_name: str) -> int:
        """Last committed offset, 0 if the table was never synced"""
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._query(SELECT_OFFSET), (table_name,))
                    row = cur.fetchone()
        except psycopg2.Error as e:
            raise PersistenceError(f"Cannot read offset for {table_name}: {e}") from e
        return int(row[0]) if row else 0

    def commit(self, table_name: str, last_sent_id: int) -> int:
        """Upsert the offset atomically; returns the stored value"""
        if last_sent_id < 0:
            raise ValueError(f"Offset must not be negative, got {last_sent_id}")
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._query(UPSERT_OFFSET), (table_name, last_sent_id))
                    row = cur.fetchone()
        except psycopg2.Error as e:
            raise PersistenceError(f"Cannot commit offset {last_sent_id} for {table_name}: {e}") from e

        stored = int(row[0]) if row else last_sent_id
        if stored != last_sent_id:
            logger.warning(
                f"Offset for {table_name} not moved back: kept {stored}, requested {last_sent_id}"
            )
        logger.debug(f"Committed offset {stored} for {table_name}")
        return stored

    def list_entries(self) -> List[TrackingEntry]:
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._query(SELECT_ALL))
                    rows = cur.fetchall()
        except psycopg2.Error as e:
            raise PersistenceError(f"Cannot list tracking entries: {e}") from e
        return [TrackingEntry(table_name=name, last_sent_id=int(last)) for name, last in rows]
