"""
Row Fetcher
Bounded, ascending range reads of new rows from a tracked source table
"""

import logging
from typing import List, Optional

import psycopg2
from psycopg2 import sql

from .db import DatabasePool
from .errors import QueryError
from .models import Row, RowBatch

logger = logging.getLogger(__name__)

DEFAULT_FETCH_LIMIT = 1000

FETCH_NEW_ROWS = "SELECT * FROM {table} WHERE {id} > %s ORDER BY {id} ASC LIMIT %s"


def table_identifier(table_name: str, default_schema: Optional[str] = None) -> sql.Identifier:
    """Quote a (possibly schema-qualified) table name for safe interpolation"""
    parts = table_name.split(".")
    if not table_name or any(not p for p in parts) or len(parts) > 2:
        raise QueryError(f"Invalid table name: {table_name!r}")
    if len(parts) == 1 and default_schema:
        parts = [default_schema, parts[0]]
    return sql.Identifier(*parts)


class RowFetcher:
    """Reads rows with identity > since_id, at most `limit` per call"""

    def __init__(
        self,
        pool: DatabasePool,
        default_limit: int = DEFAULT_FETCH_LIMIT,
        schema: Optional[str] = None,
        query_timeout_ms: Optional[int] = None,
    ):
        if default_limit <= 0:
            raise ValueError("Fetch limit must be positive")
        self.pool = pool
        self.default_limit = default_limit
        self.schema = schema
        self.query_timeout_ms = query_timeout_ms

    def build_query(self, table_name: str, id_column: str = "id") -> sql.Composed:
        return sql.SQL(FETCH_NEW_ROWS).format(
            table=table_identifier(table_name, self.schema),
            id=sql.Identifier(id_column),
        )

    def fetch(
        self,
        table_name: str,
        since_id: int,
        limit: Optional[int] = None,
        id_column: str = "id",
    ) -> RowBatch:
        limit = limit or self.default_limit
        query = self.build_query(table_name, id_column)

        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    if self.query_timeout_ms:
                        cur.execute("SET LOCAL statement_timeout = %s", (int(self.query_timeout_ms),))
                    cur.execute(query, (since_id, limit))
                    columns = [d[0] for d in cur.description]
                    records = cur.fetchall()
        except psycopg2.Error as e:
            raise QueryError(f"Fetch from {table_name} since {since_id} failed: {e}") from e

        if not records:
            logger.debug(f"No new rows in {table_name} after id {since_id}")
            return RowBatch.empty(table_name)

        if id_column not in columns:
            raise QueryError(f"Table {table_name} has no identity column {id_column!r}")

        rows = [Row.from_record(columns, values) for values in records]
        ids = self._identities(table_name, rows, id_column)

        logger.debug(f"Fetched {len(rows)} rows from {table_name} (ids {ids[0]}..{ids[-1]})")
        return RowBatch(
            table_name=table_name,
            rows=tuple(rows),
            max_id=max(ids),
            first_id=ids[0],
        )

    @staticmethod
    def _identities(table_name: str, rows: List[Row], id_column: str) -> List[int]:
        ids = []
        for row in rows:
            value = row.get(id_column)
            if isinstance(value, bool) or not isinstance(value, int):
                raise QueryError(
                    f"Table {table_name}: identity column {id_column!r} is not an integer ({value!r})"
                )
            ids.append(value)
        return ids
