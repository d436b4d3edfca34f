"""
Shared test fixtures for Row Sync
In-memory stand-ins for the source tables, the offset store and the stream
"""

import sys
import os
import threading
from datetime import datetime
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.row_sync.errors import PersistenceError, PublishError, QueryError
from src.row_sync.models import Row, RowBatch, StreamMessage


class InMemoryFetcher:
    """Source tables held as lists of dicts, ascending by id"""

    def __init__(self, tables=None):
        self.tables = {name: list(rows) for name, rows in (tables or {}).items()}
        self.calls = []
        self.fail_next = 0

    def insert(self, table, row):
        self.tables.setdefault(table, []).append(row)

    def fetch(self, table_name, since_id, limit=None, id_column="id"):
        self.calls.append((table_name, since_id, limit))
        if self.fail_next:
            self.fail_next -= 1
            raise QueryError(f"{table_name} unreachable")
        matching = [r for r in self.tables.get(table_name, []) if r[id_column] > since_id]
        matching.sort(key=lambda r: r[id_column])
        if limit:
            matching = matching[:limit]
        if not matching:
            return RowBatch.empty(table_name)
        rows = tuple(Row.from_record(list(r.keys()), list(r.values())) for r in matching)
        ids = [r[id_column] for r in matching]
        return RowBatch(table_name=table_name, rows=rows, max_id=max(ids), first_id=ids[0])


class InMemoryPublisher:
    """Records every delivered message; can fail the next N publish calls"""

    def __init__(self):
        self.messages = []
        self.fail_next = 0
        self.fail_after_messages = None
        self._lock = threading.Lock()

    def _deliver(self, table_name, messages):
        with self._lock:
            if self.fail_next:
                self.fail_next -= 1
                # Partial delivery: a prefix goes out, then the stream fails
                if self.fail_after_messages is not None:
                    for m in messages[:self.fail_after_messages]:
                        self.messages.append((table_name, m))
                raise PublishError("stream unavailable")
            for m in messages:
                self.messages.append((table_name, m))

    def publish(self, table_name, parts):
        messages = [
            StreamMessage(value=p.payload, key=table_name, headers=p.headers(),
                          message_id=f"{p.schema_id}/{p.part_number}")
            for p in sorted(parts, key=lambda p: p.part_number)
        ]
        self._deliver(table_name, messages)

    def publish_rows(self, table_name, payloads):
        self._deliver(table_name, [StreamMessage(value=p, key=table_name) for p in payloads])

    def for_table(self, table_name):
        return [m for t, m in self.messages if t == table_name]


class InMemoryOffsetStore:
    """Offsets in a dict; records every commit; can fail the next N calls"""

    def __init__(self, offsets=None):
        self.offsets = dict(offsets or {})
        self.commits = []
        self.fail_next_commits = 0
        self.fail_next_gets = 0

    def get(self, table_name):
        if self.fail_next_gets:
            self.fail_next_gets -= 1
            raise PersistenceError("tracking store unavailable")
        return self.offsets.get(table_name, 0)

    def commit(self, table_name, last_sent_id):
        if self.fail_next_commits:
            self.fail_next_commits -= 1
            raise PersistenceError("tracking store unavailable")
        self.commits.append((table_name, last_sent_id))
        stored = max(self.offsets.get(table_name, 0), last_sent_id)
        self.offsets[table_name] = stored
        return stored


def make_rows(start, end, **extra):
    """Rows with ids start..end inclusive"""
    return [
        {"id": i, "name": f"row-{i}", "amount": Decimal(f"{i}.50"),
         "created_at": datetime(2024, 1, 15, 10, 0, 0), **extra}
        for i in range(start, end + 1)
    ]


@pytest.fixture
def fetcher():
    return InMemoryFetcher()


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def offset_store():
    return InMemoryOffsetStore()


@pytest.fixture
def stop_event():
    return threading.Event()


@pytest.fixture
def sample_rows():
    return make_rows(1, 5)


@pytest.fixture
def sample_record():
    """Column names and driver values as psycopg2 returns them"""
    columns = ["id", "name", "balance", "active", "created_at", "note"]
    values = [7, "Alice", Decimal("1234.56"), True, datetime(2024, 1, 15, 10, 30, 0), None]
    return columns, values


@pytest.fixture
def rows_between():
    return make_rows
