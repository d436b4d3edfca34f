"""
Row Sync Package
Incrementally replicates newly inserted PostgreSQL rows to Solace PubSub+
"""

from .config import RowSyncConfig, TableConfig, load_config
from .errors import (
    SyncError,
    ConfigError,
    QueryError,
    PublishError,
    PersistenceError,
    SerializationError,
)
from .models import Row, RowBatch, MessagePart, TrackingEntry, ValueKind
from .chunker import chunk, reassemble, serialize_batch, serialize_row, make_schema_id
from .backoff import build_wait, delay_for
from .db import DatabasePool
from .fetcher import RowFetcher
from .offset_store import OffsetStore
from .publisher import StreamPublisher
from .sync_loop import TableSyncLoop, SyncState
from .supervisor import SyncSupervisor

__all__ = [
    "RowSyncConfig",
    "TableConfig",
    "load_config",
    "SyncError",
    "ConfigError",
    "QueryError",
    "PublishError",
    "PersistenceError",
    "SerializationError",
    "Row",
    "RowBatch",
    "MessagePart",
    "TrackingEntry",
    "ValueKind",
    "chunk",
    "reassemble",
    "serialize_batch",
    "serialize_row",
    "make_schema_id",
    "build_wait",
    "delay_for",
    "DatabasePool",
    "RowFetcher",
    "OffsetStore",
    "StreamPublisher",
    "TableSyncLoop",
    "SyncState",
    "SyncSupervisor",
]
