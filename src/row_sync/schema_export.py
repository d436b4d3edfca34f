"""
Schema Export
One-shot introspection of the source schema, published once to the stream
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import psycopg2

from .chunker import chunk
from .db import DatabasePool
from .errors import QueryError, SerializationError

logger = logging.getLogger(__name__)

SCHEMA_TOPIC_SUFFIX = "_schema"

LIST_COLUMNS = """
    SELECT c.table_name,
           c.column_name,
           c.data_type,
           c.is_nullable,
           (pk.column_name IS NOT NULL) AS is_primary
    FROM information_schema.columns c
    JOIN information_schema.tables t
      ON t.table_schema = c.table_schema
     AND t.table_name = c.table_name
     AND t.table_type = 'BASE TABLE'
    LEFT JOIN (
        SELECT kcu.table_schema, kcu.table_name, kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON kcu.constraint_name = tc.constraint_name
         AND kcu.table_schema = tc.table_schema
        WHERE tc.constraint_type = 'PRIMARY KEY'
    ) pk
      ON pk.table_schema = c.table_schema
     AND pk.table_name = c.table_name
     AND pk.column_name = c.column_name
    WHERE c.table_schema = %s
    ORDER BY c.table_name, c.ordinal_position
"""


@dataclass
class ColumnSchema:
    name: str
    data_type: str
    is_nullable: bool
    is_primary: bool


@dataclass
class TableSchema:
    name: str
    columns: List[ColumnSchema] = field(default_factory=list)


@dataclass
class DatabaseSchema:
    database_name: str
    tables: List[TableSchema] = field(default_factory=list)

    def to_json(self) -> bytes:
        try:
            return json.dumps(asdict(self), separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode schema: {e}") from e


def export_schema(
    pool: DatabasePool, schema_name: str = "public", database_name: Optional[str] = None
) -> DatabaseSchema:
    """Read tables and columns of one schema from information_schema"""
    try:
        with pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(LIST_COLUMNS, (schema_name,))
                rows = cur.fetchall()
    except psycopg2.Error as e:
        raise QueryError(f"Schema introspection of {schema_name} failed: {e}") from e

    tables: Dict[str, TableSchema] = {}
    for table_name, column_name, data_type, is_nullable, is_primary in rows:
        table = tables.setdefault(table_name, TableSchema(name=table_name))
        table.columns.append(ColumnSchema(
            name=column_name,
            data_type=data_type,
            is_nullable=is_nullable == "YES",
            is_primary=bool(is_primary),
        ))

    logger.info(f"Exported schema {schema_name}: {len(tables)} tables")
    return DatabaseSchema(database_name=database_name or schema_name, tables=list(tables.values()))


def publish_schema(publisher, schema: DatabaseSchema, max_part_size: int) -> int:
    """Publish the schema document once, chunked; returns number of parts"""
    payload = schema.to_json()
    parts = chunk(payload, max_part_size, f"{SCHEMA_TOPIC_SUFFIX}:{schema.database_name}")
    publisher.publish(SCHEMA_TOPIC_SUFFIX, parts)
    logger.info(f"Schema {schema.database_name} published ({len(payload)} bytes, {len(parts)} parts)")
    return len(parts)
