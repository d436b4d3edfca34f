"""
Table Sync Loop
Per-table fetch -> chunk -> publish -> commit -> wait cycle with backoff and cancellation
"""

import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from tenacity import Retrying, retry_if_exception_type, wait_exponential, wait_fixed

from .backoff import WaitStrategy, delay_for
from .chunker import chunk, make_schema_id, serialize_batch, serialize_row
from .config import TableConfig
from .errors import PersistenceError, PublishError, QueryError, SerializationError
from .fetcher import DEFAULT_FETCH_LIMIT
from .models import RowBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_RETRY_DELAY = 10.0
DEFAULT_MAX_PART_SIZE = 512 * 1024


class SyncState(str, Enum):
    FETCHING = "fetching"
    PUBLISHING = "publishing"
    COMMITTING = "committing"
    WAITING = "waiting"
    STOPPED = "stopped"


@dataclass
class LoopStats:
    cycles: int = 0
    successful_cycles: int = 0
    rows_published: int = 0
    batches_published: int = 0
    fetch_failures: int = 0
    publish_failures: int = 0
    commit_failures: int = 0


class TableSyncLoop:
    """Replicates new rows of one table; the only writer of that table's offset"""

    def __init__(
        self,
        table: TableConfig,
        fetcher,
        publisher,
        offset_store,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
        max_part_size: int = DEFAULT_MAX_PART_SIZE,
        framing: str = "chunked",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry_wait: Optional[WaitStrategy] = None,
        commit_wait: Optional[WaitStrategy] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        if framing not in ("chunked", "per_row"):
            raise ValueError(f"Unknown framing mode: {framing}")
        self.table = table
        self.fetcher = fetcher
        self.publisher = publisher
        self.offset_store = offset_store
        self.fetch_limit = fetch_limit
        self.max_part_size = max_part_size
        self.framing = framing
        self.poll_interval = poll_interval
        self.retry_wait = retry_wait or wait_fixed(DEFAULT_RETRY_DELAY)
        self.commit_wait = commit_wait or wait_exponential(multiplier=1, max=60)
        self.stop_event = stop_event or threading.Event()

        self.state = SyncState.STOPPED
        self.stats = LoopStats()
        self.error: Optional[BaseException] = None
        self._offset: Optional[int] = None
        self._consecutive_failures = 0

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def offset(self) -> Optional[int]:
        """In-memory high-water mark; None until loaded from the store"""
        return self._offset

    # ---- Lifecycle ----

    def load_offset(self) -> bool:
        """Resume from max(configured initial offset, committed offset).

        Returns False if cancelled before the store answered.
        """
        ok, stored = self._retry_persistence(
            lambda: self.offset_store.get(self.name), "read offset"
        )
        if not ok:
            return False
        self._offset = max(self.table.initial_offset, stored)
        logger.info(f"[{self.name}] Starting from offset {self._offset} (stored {stored})")
        return True

    def run(self) -> None:
        """Cycle until the stop event is set or the table hits a serialization error"""
        self.error = None
        try:
            if self._offset is None and not self.load_offset():
                return
            while not self.stop_event.is_set():
                delay = self.run_cycle()
                self.state = SyncState.WAITING
                if self.stop_event.wait(delay):
                    break
        except SerializationError as e:
            self.error = e
            logger.error(f"[{self.name}] Stopping sync, payload cannot be encoded: {e}")
        finally:
            self.state = SyncState.STOPPED
            logger.info(f"[{self.name}] Sync loop stopped at offset {self._offset}")

    def stop(self) -> None:
        self.stop_event.set()

    # ---- One cycle ----

    def run_cycle(self) -> float:
        """Run one FETCHING -> PUBLISHING -> COMMITTING pass.

        Returns the number of seconds to wait before the next cycle.
        SerializationError propagates to the caller. A batch that was
        published is committed even if a stop arrives meanwhile.
        """
        if self._offset is None:
            raise RuntimeError(f"Offset for {self.name} not loaded")
        self.stats.cycles += 1

        self.state = SyncState.FETCHING
        try:
            batch = self.fetcher.fetch(
                self.name, self._offset, limit=self.fetch_limit, id_column=self.table.id_column
            )
        except QueryError as e:
            self.stats.fetch_failures += 1
            return self._failure_delay(f"Error fetching data: {e}")

        if batch.is_empty:
            self._consecutive_failures = 0
            self.stats.successful_cycles += 1
            logger.debug(f"[{self.name}] No new rows after {self._offset}")
            return self.poll_interval

        if self.stop_event.is_set():
            return 0.0

        self.state = SyncState.PUBLISHING
        try:
            sent = self._publish(batch)
        except PublishError as e:
            self.stats.publish_failures += 1
            return self._failure_delay(f"Error sending {len(batch)} rows to stream: {e}")

        self.state = SyncState.COMMITTING
        new_offset = max(self._offset, batch.max_id)
        ok, _ = self._retry_persistence(
            lambda: self.offset_store.commit(self.name, new_offset), "commit offset"
        )
        if not ok:
            logger.warning(
                f"[{self.name}] Published up to {batch.max_id} without commit; "
                f"rows will be re-sent on restart"
            )
            return 0.0

        self._offset = new_offset
        self._consecutive_failures = 0
        self.stats.successful_cycles += 1
        self.stats.rows_published += len(batch)
        self.stats.batches_published += 1
        logger.info(
            f"[{self.name}] Data up to ID {new_offset} published successfully "
            f"({len(batch)} rows, {sent} messages)"
        )
        return self.poll_interval

    def _publish(self, batch: RowBatch) -> int:
        if self.framing == "per_row":
            payloads = [serialize_row(row) for row in batch.rows]
            self.publisher.publish_rows(self.name, payloads)
            return len(payloads)

        payload = serialize_batch(batch)
        parts = chunk(payload, self.max_part_size, make_schema_id(self.name, batch, payload))
        self.publisher.publish(self.name, parts)
        return len(parts)

    # ---- Failure handling ----

    def _failure_delay(self, message: str) -> float:
        self._consecutive_failures += 1
        delay = delay_for(self.retry_wait, self._consecutive_failures)
        logger.error(
            f"[{self.name}] {message} (attempt {self._consecutive_failures}, retrying in {delay:.1f}s)"
        )
        return delay

    def _log_retry(self, what: str) -> Callable:
        def before_sleep(retry_state) -> None:
            logger.error(
                f"[{self.name}] Failed to {what} (attempt {retry_state.attempt_number}): "
                f"{retry_state.outcome.exception()}; retrying in {retry_state.next_action.sleep:.1f}s"
            )
        return before_sleep

    def _retry_persistence(self, action: Callable[[], T], what: str) -> Tuple[bool, Optional[T]]:
        """Retry an offset store call until it succeeds or the loop is cancelled.

        The first attempt always runs; cancellation is honoured between retries.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(PersistenceError),
            wait=self.commit_wait,
            stop=lambda retry_state: self.stop_event.is_set(),
            sleep=self.stop_event.wait,
            before_sleep=self._log_retry(what),
            reraise=True,
        )
        try:
            for attempt in retrying:
                if attempt.retry_state.attempt_number > 1 and self.stop_event.is_set():
                    break
                with attempt:
                    try:
                        return True, action()
                    except PersistenceError:
                        self.stats.commit_failures += 1
                        raise
        except PersistenceError as e:
            logger.warning(f"[{self.name}] Cancelled while trying to {what}: {e}")
            return False, None
        logger.warning(f"[{self.name}] Cancelled while trying to {what}")
        return False, None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "table": self.name,
            "state": self.state.value,
            "offset": self._offset,
            "error": str(self.error) if self.error else None,
            **asdict(self.stats),
        }
