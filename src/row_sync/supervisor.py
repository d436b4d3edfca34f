"""
Sync Supervisor
Runs one sync loop thread per tracked table, restarts crashed loops and handles shutdown signals
"""

import logging
import signal
import threading
import time
from typing import Callable, Dict, List, Optional

from tenacity import wait_exponential

from .backoff import WaitStrategy, build_wait, delay_for
from .config import RowSyncConfig, TableConfig
from .db import DatabasePool
from .fetcher import RowFetcher
from .offset_store import OffsetStore
from .sync_loop import TableSyncLoop

logger = logging.getLogger(__name__)

LoopFactory = Callable[[TableConfig, threading.Event], TableSyncLoop]


class SyncSupervisor:
    """Starts and watches the per-table sync loops"""

    def __init__(
        self,
        tables: List[TableConfig],
        loop_factory: LoopFactory,
        restart_crashed: bool = True,
        restart_wait: Optional[WaitStrategy] = None,
        stats_interval: float = 60.0,
        tick_seconds: float = 1.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.tables = list(tables)
        self.loop_factory = loop_factory
        self.restart_crashed = restart_crashed
        self.restart_wait = restart_wait or wait_exponential(multiplier=5, max=300)
        self.stats_interval = stats_interval
        self.tick_seconds = tick_seconds
        self.stop_event = stop_event or threading.Event()

        self.loops: Dict[str, TableSyncLoop] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._restarts: Dict[str, int] = {}
        self._crashes: Dict[str, int] = {}
        self._restart_at: Dict[str, float] = {}

    @classmethod
    def from_config(cls, config: RowSyncConfig, pool: DatabasePool, publisher) -> "SyncSupervisor":
        """Wire fetcher, offset store and publisher into one loop per configured table"""
        fetcher = RowFetcher(
            pool,
            default_limit=config.sync.fetch_limit,
            schema=config.database.schema,
            query_timeout_ms=config.database.query_timeout_ms,
        )
        offset_store = OffsetStore(pool, config.sync.tracking_table)

        def factory(table: TableConfig, stop_event: threading.Event) -> TableSyncLoop:
            return TableSyncLoop(
                table,
                fetcher=fetcher,
                publisher=publisher,
                offset_store=offset_store,
                fetch_limit=config.sync.fetch_limit,
                max_part_size=config.sync.max_part_size,
                framing=config.sync.framing,
                poll_interval=config.sync.poll_interval_seconds,
                retry_wait=build_wait(config.sync.retry),
                commit_wait=build_wait(config.sync.commit_retry),
                stop_event=stop_event,
            )

        return cls(
            config.tables,
            factory,
            restart_crashed=config.sync.restart_crashed_loops,
            stats_interval=config.sync.stats_interval_seconds,
        )

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.stop()

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not on main thread, signal handlers not installed")
            return
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    # ---- Loop threads ----

    def _run_loop(self, loop: TableSyncLoop) -> None:
        try:
            loop.run()
        except Exception as e:
            loop.error = e
            logger.exception(f"[{loop.name}] Sync loop crashed: {e}")

    def _start_loop(self, table: TableConfig) -> None:
        loop = self.loop_factory(table, self.stop_event)
        thread = threading.Thread(
            target=self._run_loop, args=(loop,), name=f"sync-{table.name}", daemon=True
        )
        self.loops[table.name] = loop
        self._threads[table.name] = thread
        thread.start()

    def start(self) -> None:
        """Start one loop per table"""
        for table in self.tables:
            self._start_loop(table)
        logger.info(f"Started {len(self.tables)} sync loops: {[t.name for t in self.tables]}")

    def crashed_tables(self) -> List[str]:
        """Tables whose loop exited with an error while still supposed to run"""
        if self.stop_event.is_set():
            return []
        return [
            name for name, thread in self._threads.items()
            if not thread.is_alive() and self.loops[name].error is not None
        ]

    def check_loops(self) -> List[str]:
        """Restart crashed loops whose restart delay has elapsed; returns restarted tables.

        The delay grows with consecutive crashes and starts over once a loop
        has completed a successful cycle.
        """
        restarted = []
        now = time.monotonic()
        by_name = {t.name: t for t in self.tables}
        for name in self.crashed_tables():
            if not self.restart_crashed:
                continue
            if name not in self._restart_at:
                loop = self.loops[name]
                if loop.get_stats().get("successful_cycles", 0) > 0:
                    self._crashes[name] = 0
                self._crashes[name] = self._crashes.get(name, 0) + 1
                delay = delay_for(self.restart_wait, self._crashes[name])
                self._restart_at[name] = now + delay
                logger.warning(
                    f"[{name}] Loop down ({loop.error}); restart #{self._restarts.get(name, 0) + 1} "
                    f"in {delay:.0f}s"
                )
                continue
            if now < self._restart_at[name]:
                continue
            del self._restart_at[name]
            self._restarts[name] = self._restarts.get(name, 0) + 1
            self._start_loop(by_name[name])
            restarted.append(name)
            logger.info(f"[{name}] Sync loop restarted")
        return restarted

    # ---- Main ----

    def run(self) -> None:
        """Start all loops and block until stopped"""
        self.install_signal_handlers()
        self.start()
        last_stats = time.monotonic()
        try:
            while not self.stop_event.wait(self.tick_seconds):
                self.check_loops()
                if time.monotonic() - last_stats >= self.stats_interval:
                    self.log_stats()
                    last_stats = time.monotonic()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            self.stop()
        finally:
            self.join()

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: float = 30.0) -> None:
        deadline = time.monotonic() + timeout
        for name, thread in self._threads.items():
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                logger.warning(f"[{name}] Sync loop did not stop within {timeout:.0f}s")
        logger.info("All sync loops stopped")

    def get_stats(self) -> Dict[str, dict]:
        stats = {}
        for name, loop in self.loops.items():
            entry = loop.get_stats()
            entry["alive"] = self._threads[name].is_alive()
            entry["restarts"] = self._restarts.get(name, 0)
            stats[name] = entry
        return stats

    def log_stats(self) -> None:
        for name, s in self.get_stats().items():
            logger.info(
                f"Stats [{name}]: state={s['state']}, offset={s['offset']}, "
                f"rows={s['rows_published']}, batches={s['batches_published']}, "
                f"failures=[fetch={s['fetch_failures']},publish={s['publish_failures']},"
                f"commit={s['commit_failures']}], restarts={s['restarts']}"
            )
