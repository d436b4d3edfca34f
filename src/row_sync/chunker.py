"""
Payload Chunker
Serializes row batches and splits payloads into size-bounded, reassemblable parts
"""

import hashlib
import json
from typing import Any, Dict, List, Sequence

from .errors import SerializationError
from .models import MessagePart, Row, RowBatch


def _encode(document: Any, what: str) -> bytes:
    try:
        return json.dumps(document, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot encode {what}: {e}") from e


def serialize_row(row: Row) -> bytes:
    """One row as a JSON object (per-row framing)"""
    return _encode(row.to_dict(), "row")


def serialize_batch(batch: RowBatch) -> bytes:
    """Whole batch as one JSON document (chunked framing)"""
    document: Dict[str, Any] = {
        "table": batch.table_name,
        "first_id": batch.first_id,
        "max_id": batch.max_id,
        "row_count": len(batch.rows),
        "rows": [row.to_dict() for row in batch.rows],
    }
    return _encode(document, f"batch for {batch.table_name}")


def make_schema_id(table_name: str, batch: RowBatch, payload: bytes) -> str:
    """Identifier for one logical payload.

    Carries the table, the batch's id range and a digest of the payload, so it
    differs whenever the bytes differ but repeats when an identical batch is
    re-sent after a failed publish.
    """
    digest = hashlib.sha256(payload).hexdigest()[:16]
    return f"{table_name}:{batch.first_id}-{batch.max_id}:{digest}"


def chunk(payload: bytes, max_part_size: int, schema_id: str) -> List[MessagePart]:
    """Split payload into ceil(len/max_part_size) parts.

    An empty payload yields a single empty part with total_parts=1.
    """
    if max_part_size <= 0:
        raise ValueError(f"max_part_size must be positive, got {max_part_size}")

    if not payload:
        return [MessagePart(schema_id=schema_id, part_number=0, total_parts=1, payload=b"")]

    total_parts = (len(payload) + max_part_size - 1) // max_part_size
    return [
        MessagePart(
            schema_id=schema_id,
            part_number=i,
            total_parts=total_parts,
            payload=bytes(payload[i * max_part_size:(i + 1) * max_part_size]),
        )
        for i in range(total_parts)
    ]


def reassemble(parts: Sequence[MessagePart]) -> bytes:
    """Concatenate parts in part_number order after validating the set is complete"""
    if not parts:
        raise ValueError("No parts to reassemble")

    schema_ids = {p.schema_id for p in parts}
    if len(schema_ids) != 1:
        raise ValueError(f"Parts belong to different payloads: {sorted(schema_ids)}")

    totals = {p.total_parts for p in parts}
    if len(totals) != 1:
        raise ValueError(f"Inconsistent total_parts values: {sorted(totals)}")
    total_parts = totals.pop()

    ordered = sorted(parts, key=lambda p: p.part_number)
    numbers = [p.part_number for p in ordered]
    if numbers != list(range(total_parts)):
        raise ValueError(f"Expected parts 0..{total_parts - 1}, got {numbers}")

    return b"".join(p.payload for p in ordered)
