"""
Row Sync Data Model
Typed row snapshots, fetch batches, chunked message parts and tracking entries
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple
from uuid import UUID

from .errors import SerializationError


class ValueKind(str, Enum):
    """Closed set of column value kinds"""
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    TIMESTAMP = "timestamp"
    NULL = "null"


class Cell(NamedTuple):
    """One column of a row"""
    name: str
    kind: ValueKind
    value: Any


def to_cell(name: str, value: Any) -> Cell:
    """Classify a driver value into one of the supported kinds"""
    if value is None:
        return Cell(name, ValueKind.NULL, None)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return Cell(name, ValueKind.BOOL, value)
    if isinstance(value, int):
        return Cell(name, ValueKind.INT, value)
    if isinstance(value, float):
        return Cell(name, ValueKind.FLOAT, value)
    if isinstance(value, str):
        return Cell(name, ValueKind.STRING, value)
    if isinstance(value, (datetime, date, time)):
        return Cell(name, ValueKind.TIMESTAMP, value)
    if isinstance(value, Decimal):
        return Cell(name, ValueKind.STRING, str(value))
    if isinstance(value, UUID):
        return Cell(name, ValueKind.STRING, str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Cell(name, ValueKind.STRING, base64.b64encode(bytes(value)).decode("ascii"))
    if isinstance(value, (dict, list)):
        try:
            encoded = json.dumps(value, separators=(",", ":"), default=str)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Column {name}: cannot encode JSON value: {e}") from e
        return Cell(name, ValueKind.STRING, encoded)
    raise SerializationError(
        f"Column {name}: unsupported value type {type(value).__name__}"
    )


class Row:
    """Immutable ordered snapshot of one source record"""

    __slots__ = ("_cells",)

    def __init__(self, cells: Sequence[Cell]):
        self._cells: Tuple[Cell, ...] = tuple(cells)

    @classmethod
    def from_record(cls, columns: Sequence[str], values: Sequence[Any]) -> "Row":
        if len(columns) != len(values):
            raise SerializationError(
                f"Row has {len(values)} values for {len(columns)} columns"
            )
        return cls([to_cell(name, value) for name, value in zip(columns, values)])

    @property
    def cells(self) -> Tuple[Cell, ...]:
        return self._cells

    @property
    def columns(self) -> List[str]:
        return [c.name for c in self._cells]

    def get(self, column: str, default: Any = None) -> Any:
        for cell in self._cells:
            if cell.name == column:
                return cell.value
        return default

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready ordered mapping; timestamps become ISO-8601 text"""
        result: Dict[str, Any] = {}
        for cell in self._cells:
            if cell.kind is ValueKind.TIMESTAMP:
                result[cell.name] = cell.value.isoformat()
            else:
                result[cell.name] = cell.value
        return result

    def __iter__(self) -> Iterator[Cell]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self._cells == other._cells

    def __hash__(self) -> int:
        return hash(self._cells)

    def __repr__(self) -> str:
        return f"Row({self.to_dict()!r})"


@dataclass(frozen=True)
class RowBatch:
    """Rows returned by one fetch cycle, ascending by identity.

    max_id is 0 when the batch is empty, meaning "no new rows".
    """
    table_name: str
    rows: Tuple[Row, ...] = ()
    max_id: int = 0
    first_id: int = 0

    @classmethod
    def empty(cls, table_name: str) -> "RowBatch":
        return cls(table_name=table_name)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class MessagePart:
    """One size-bounded slice of a serialized payload"""
    schema_id: str
    part_number: int
    total_parts: int
    payload: bytes

    def headers(self) -> Dict[str, str]:
        return {
            "schema_id": self.schema_id,
            "part_number": str(self.part_number),
            "total_parts": str(self.total_parts),
        }


@dataclass
class TrackingEntry:
    """Persisted high-water mark for one table"""
    table_name: str
    last_sent_id: int = 0


@dataclass(frozen=True)
class StreamMessage:
    """Transport-neutral unit handed to the publisher"""
    value: bytes
    key: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    message_id: Optional[str] = None
